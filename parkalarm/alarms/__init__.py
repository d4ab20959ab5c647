"""
Alarms Module
=============
Scheduled and event-driven alarms for parking operations.

This module provides:
- Alarm definitions with cron-scheduled or event-driven conditions
- Condition checks against payment, movement and decision data
- Deduplicated alarm lifecycle (trigger, acknowledge, resolve)
- Multi-channel notifications (in-app, email, SMS)
- Side-effect actions (Telegram, webhook, announcement)

The AlarmService facade lives in parkalarm.alarms.service.
"""

from .actions import ActionExecutor, get_action_types, interpolate_template
from .checker import ConditionChecker, PollerFailureTracker
from .defaults import DEFAULT_DEFINITIONS, seed_default_definitions
from .engine import AlarmEngine
from .models import (
    ACTIVE_STATUSES,
    ActionConfig,
    ActionResult,
    ActionType,
    Alarm,
    AlarmDefinition,
    AlarmNotFoundError,
    AlarmNotification,
    AlarmSeverity,
    AlarmStatus,
    AlarmType,
    InvalidAlarmTransitionError,
    NotificationChannel,
    NotificationStatus,
)
from .notifications import NotificationDispatcher
from .scheduler import AlarmScheduler, ScheduledCheck, calculate_next_run
from .sources import ConditionDataSource, SqliteConditionSource
from .store import AlarmStore

__all__ = [
    # Models
    "AlarmDefinition",
    "Alarm",
    "AlarmNotification",
    "ActionConfig",
    "ActionResult",
    "AlarmType",
    "AlarmSeverity",
    "AlarmStatus",
    "ACTIVE_STATUSES",
    "NotificationChannel",
    "NotificationStatus",
    "ActionType",
    "AlarmNotFoundError",
    "InvalidAlarmTransitionError",
    # Storage
    "AlarmStore",
    "ConditionDataSource",
    "SqliteConditionSource",
    # Engine
    "AlarmEngine",
    "ConditionChecker",
    "PollerFailureTracker",
    # Scheduler
    "AlarmScheduler",
    "ScheduledCheck",
    "calculate_next_run",
    # Dispatch
    "NotificationDispatcher",
    "ActionExecutor",
    "interpolate_template",
    "get_action_types",
    # Defaults
    "DEFAULT_DEFINITIONS",
    "seed_default_definitions",
]
