"""
Base Notification Transport
===========================
Abstract base class for EMAIL/SMS delivery back-ends.

Features:
- Sliding-window send limits per minute and per hour
- Delivery counters and last error for the dispatcher
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Consecutive failures before a transport reports ERROR
ERROR_THRESHOLD = 5


class TransportStatus(Enum):
    """Transport health."""
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"
    ERROR = "ERROR"
    RATE_LIMITED = "RATE_LIMITED"


@dataclass
class TransportConfig:
    """Settings shared by every notification transport."""
    name: str
    enabled: bool = True

    # Send limits
    max_per_minute: int = 10
    max_per_hour: int = 100

    max_message_length: int = 4000
    timeout_seconds: float = 10.0


class NotificationTransport(ABC):
    """
    Delivers one rendered notification to one recipient.

    Subclasses implement send() and test(). The dispatcher reads last_error
    when a send returns False.
    """

    def __init__(self, config: TransportConfig):
        self.config = config
        self._status = TransportStatus.ACTIVE if config.enabled else TransportStatus.DISABLED
        self._sent_at: deque[datetime] = deque()
        self._delivered = 0
        self._failures = 0
        self._consecutive_failures = 0
        self._last_error: str | None = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def status(self) -> TransportStatus:
        return self._status

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @abstractmethod
    def send(self, recipient: str, subject: str, body: str) -> bool:
        """
        Deliver a message.

        Args:
            recipient: Address or phone number
            subject: Short summary line
            body: Full message text

        Returns:
            True if delivery was accepted
        """

    @abstractmethod
    def test(self) -> bool:
        """Check that the back-end is reachable with the configured credentials."""

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _within_limits(self) -> bool:
        """False when the minute or hour window is full."""
        now = datetime.now()
        while self._sent_at and now - self._sent_at[0] > timedelta(hours=1):
            self._sent_at.popleft()

        last_minute = sum(1 for t in self._sent_at if now - t <= timedelta(minutes=1))
        if last_minute >= self.config.max_per_minute:
            self._fail(f"{self.name}: send limit reached ({self.config.max_per_minute}/min)")
            self._status = TransportStatus.RATE_LIMITED
            return False

        if len(self._sent_at) >= self.config.max_per_hour:
            self._fail(f"{self.name}: send limit reached ({self.config.max_per_hour}/h)")
            self._status = TransportStatus.RATE_LIMITED
            return False

        return True

    def _delivered_ok(self):
        self._sent_at.append(datetime.now())
        self._delivered += 1
        self._consecutive_failures = 0
        self._status = TransportStatus.ACTIVE

    def _fail(self, error: str):
        self._failures += 1
        self._consecutive_failures += 1
        self._last_error = error
        logger.error(error)

        if self._consecutive_failures >= ERROR_THRESHOLD:
            self._status = TransportStatus.ERROR

    def _clip(self, text: str) -> str:
        limit = self.config.max_message_length
        return text if len(text) <= limit else text[:limit - 3] + "..."

    def get_statistics(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self._status.value,
            "delivered": self._delivered,
            "failures": self._failures,
            "last_error": self._last_error,
        }
