"""
Alarm Models
============
Definitions, alarms, notifications and action results for the alarm engine.

Features:
- Closed enums for alarm types, severities, statuses and channels
- Serialization helpers for persistence and API output
- Error types surfaced to API callers
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AlarmNotFoundError(LookupError):
    """Raised when a definition, alarm or notification id is unknown."""


class InvalidAlarmTransitionError(ValueError):
    """Raised when an alarm cannot move to the requested status."""


class AlarmType(Enum):
    """Kinds of conditions an alarm definition can watch."""
    NO_PAYMENT_DATA = "NO_PAYMENT_DATA"
    SITE_OFFLINE = "SITE_OFFLINE"
    HIGH_ENFORCEMENT_CANDIDATES = "HIGH_ENFORCEMENT_CANDIDATES"
    ANPR_POLLER_FAILURE = "ANPR_POLLER_FAILURE"
    PAYMENT_SYNC_FAILURE = "PAYMENT_SYNC_FAILURE"
    QR_WHITELIST_SYNC_FAILURE = "QR_WHITELIST_SYNC_FAILURE"
    CUSTOM = "CUSTOM"


class AlarmSeverity(Enum):
    """Alarm severity levels."""
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlarmStatus(Enum):
    """Alarm lifecycle status."""
    TRIGGERED = "TRIGGERED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


ACTIVE_STATUSES = (AlarmStatus.TRIGGERED, AlarmStatus.ACKNOWLEDGED)


class NotificationChannel(Enum):
    """Notification delivery medium."""
    IN_APP = "IN_APP"
    EMAIL = "EMAIL"
    SMS = "SMS"


class NotificationStatus(Enum):
    """Delivery status of a single notification."""
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    READ = "READ"


class ActionType(Enum):
    """Side-effect actions run when an alarm triggers."""
    TELEGRAM = "TELEGRAM"
    WEBHOOK = "WEBHOOK"
    ANNOUNCEMENT = "ANNOUNCEMENT"


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ActionConfig:
    """A configured side-effect action on a definition."""
    name: str
    type: ActionType
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    description: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type.value,
            "config": self.config,
            "enabled": self.enabled,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActionConfig":
        return cls(
            name=data["name"],
            type=ActionType(data["type"]),
            config=data.get("config") or {},
            enabled=data.get("enabled", True),
            description=data.get("description"),
        )


@dataclass
class AlarmDefinition:
    """
    A reusable alarm rule.

    A definition with a cron schedule is evaluated by the scheduler; one
    without is event-driven and only fires through explicit triggers.
    """
    definition_id: str
    name: str
    type: AlarmType
    description: str | None = None
    severity: AlarmSeverity = AlarmSeverity.WARNING
    site_id: str | None = None

    # Meaning depends on type (lookbackHours, noMovementMinutes, ...)
    conditions: dict[str, Any] = field(default_factory=dict)

    cron_schedule: str | None = None
    enabled: bool = True

    notification_channels: list[NotificationChannel] = field(
        default_factory=lambda: [NotificationChannel.IN_APP]
    )
    actions: list[ActionConfig] = field(default_factory=list)

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_scheduled(self) -> bool:
        return bool(self.cron_schedule)

    def to_dict(self) -> dict:
        return {
            "definition_id": self.definition_id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "severity": self.severity.value,
            "site_id": self.site_id,
            "conditions": self.conditions,
            "cron_schedule": self.cron_schedule,
            "enabled": self.enabled,
            "notification_channels": [c.value for c in self.notification_channels],
            "actions": [a.to_dict() for a in self.actions],
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AlarmDefinition":
        """Build a definition from a plain mapping (seed data, API payloads)."""
        now = datetime.now()
        return cls(
            definition_id=data["definition_id"],
            name=data["name"],
            description=data.get("description"),
            type=AlarmType(data["type"]),
            severity=AlarmSeverity(data.get("severity", "WARNING")),
            site_id=data.get("site_id"),
            conditions=data.get("conditions") or {},
            cron_schedule=data.get("cron_schedule") or None,
            enabled=data.get("enabled", True),
            notification_channels=[
                NotificationChannel(c) for c in data.get("notification_channels", ["IN_APP"])
            ],
            actions=[ActionConfig.from_dict(a) for a in data.get("actions") or []],
            created_at=from_iso(data.get("created_at")) or now,
            updated_at=from_iso(data.get("updated_at")) or now,
        )


@dataclass
class Alarm:
    """One triggered occurrence of a definition."""
    alarm_id: str
    definition_id: str
    status: AlarmStatus
    severity: AlarmSeverity
    message: str
    triggered_at: datetime
    site_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    acknowledge_notes: str | None = None

    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolve_notes: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict:
        return {
            "alarm_id": self.alarm_id,
            "definition_id": self.definition_id,
            "status": self.status.value,
            "severity": self.severity.value,
            "site_id": self.site_id,
            "message": self.message,
            "details": self.details,
            "triggered_at": to_iso(self.triggered_at),
            "acknowledged_at": to_iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "acknowledge_notes": self.acknowledge_notes,
            "resolved_at": to_iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "resolve_notes": self.resolve_notes,
        }


@dataclass
class AlarmNotification:
    """One (alarm, channel) delivery attempt."""
    notification_id: str
    alarm_id: str
    channel: NotificationChannel
    status: NotificationStatus = NotificationStatus.PENDING
    user_id: str | None = None
    recipient: str | None = None
    sent_at: datetime | None = None
    read_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "notification_id": self.notification_id,
            "alarm_id": self.alarm_id,
            "channel": self.channel.value,
            "status": self.status.value,
            "user_id": self.user_id,
            "recipient": self.recipient,
            "sent_at": to_iso(self.sent_at),
            "read_at": to_iso(self.read_at),
            "metadata": self.metadata,
            "created_at": to_iso(self.created_at),
        }


@dataclass
class ActionResult:
    """Outcome of running one action. Returned to callers, never persisted."""
    action_name: str
    action_type: ActionType
    success: bool
    message: str | None = None
    error: str | None = None
    executed_at: datetime = field(default_factory=datetime.now)
    duration_ms: int | None = None

    def to_dict(self) -> dict:
        return {
            "action_name": self.action_name,
            "action_type": self.action_type.value,
            "success": self.success,
            "message": self.message,
            "error": self.error,
            "executed_at": to_iso(self.executed_at),
            "duration_ms": self.duration_ms,
        }
