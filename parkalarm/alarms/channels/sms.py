"""
SMS Notification Transport
==========================
SMS delivery via the Twilio Messages API.
"""

import base64
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass

from .base import NotificationTransport, TransportConfig

logger = logging.getLogger(__name__)


@dataclass
class SMSConfig(TransportConfig):
    """Twilio account and sender number."""
    account_sid: str = ""
    auth_token: str = ""
    from_number: str = ""

    # One SMS segment
    max_message_length: int = 160


class SMSTransport(NotificationTransport):
    """
    Sends the notification subject as a text message.

    The body is not sent; subjects longer than one segment are clipped.
    """

    TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

    def __init__(self, config: SMSConfig):
        super().__init__(config)
        self.sms_config = config

    @property
    def _has_credentials(self) -> bool:
        cfg = self.sms_config
        return bool(cfg.account_sid and cfg.auth_token and cfg.from_number)

    def send(self, recipient: str, subject: str, body: str) -> bool:
        if not self.is_enabled:
            self._fail("SMS transport disabled")
            return False
        if not self._has_credentials:
            self._fail("Twilio credentials not configured")
            return False
        if not self._within_limits():
            return False

        form = {
            "From": self.sms_config.from_number,
            "To": recipient,
            "Body": self._clip(subject),
        }
        req = self._request(f"/Accounts/{self.sms_config.account_sid}/Messages.json", form)

        try:
            with urllib.request.urlopen(req, timeout=self.sms_config.timeout_seconds) as response:
                response.read()
                status = response.status
        except urllib.error.HTTPError as e:
            self._fail(f"SMS send error to {recipient}: HTTP {e.code}")
            return False
        except OSError as e:
            self._fail(f"SMS send error to {recipient}: {e}")
            return False

        # Twilio answers 201 Created for an accepted message
        if status != 201:
            self._fail(f"SMS send to {recipient} returned HTTP {status}")
            return False

        self._delivered_ok()
        logger.info(f"SMS sent to {recipient}")
        return True

    def test(self) -> bool:
        if not self._has_credentials:
            logger.error("Twilio credentials not configured")
            return False

        req = self._request(f"/Accounts/{self.sms_config.account_sid}.json")
        try:
            with urllib.request.urlopen(req, timeout=self.sms_config.timeout_seconds) as response:
                response.read()
        except OSError as e:
            logger.error(f"Twilio account lookup failed: {e}")
            return False
        return True

    def _request(self, path: str, form: dict | None = None) -> urllib.request.Request:
        data = urllib.parse.urlencode(form).encode() if form else None
        req = urllib.request.Request(self.TWILIO_API_BASE + path, data=data)

        token = f"{self.sms_config.account_sid}:{self.sms_config.auth_token}".encode()
        req.add_header("Authorization", "Basic " + base64.b64encode(token).decode())
        return req
