"""
Alarm Service
=============
Facade over the alarm engine for the API layer.

Features:
- Definition CRUD with automatic schedule refresh
- Alarm queries and lifecycle transitions
- Notification bell queries
- Scheduler status and manual checks
- Action type discovery and dry-run testing
"""

import logging
import uuid
from datetime import datetime
from typing import Any

from ..config import EngineConfig
from .actions import ActionExecutor, get_action_types
from .channels import EmailTransport, SMSTransport, TelegramClient
from .checker import ConditionChecker, PollerFailureTracker
from .engine import AlarmEngine
from .models import (
    ActionConfig,
    ActionResult,
    Alarm,
    AlarmDefinition,
    AlarmNotification,
    AlarmSeverity,
    AlarmStatus,
    NotificationChannel,
)
from .notifications import NotificationDispatcher
from .scheduler import AlarmScheduler
from .sources import ConditionDataSource, SqliteConditionSource
from .store import AlarmStore

logger = logging.getLogger(__name__)


class AlarmService:
    """
    Single entry point for alarm management.

    Construction wires the components but starts nothing; call start() to
    begin scheduled evaluation.
    """

    def __init__(
        self,
        store: AlarmStore,
        source: ConditionDataSource,
        dispatcher: NotificationDispatcher | None = None,
        action_executor: ActionExecutor | None = None,
        tick_interval_seconds: float = 60,
    ):
        self.store = store
        self.dispatcher = dispatcher or NotificationDispatcher(store)
        self.action_executor = action_executor or ActionExecutor()
        self.engine = AlarmEngine(store, self.dispatcher, self.action_executor)
        self.checker = ConditionChecker(self.engine, source)
        self.scheduler = AlarmScheduler(store, self.checker, tick_interval_seconds)
        self.poller_failures = PollerFailureTracker(self.checker)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "AlarmService":
        """Build the full engine from configuration."""
        store = AlarmStore(config.db_path)

        recipients = {}
        if config.email_recipient:
            recipients[NotificationChannel.EMAIL] = config.email_recipient
        if config.sms_recipient:
            recipients[NotificationChannel.SMS] = config.sms_recipient

        dispatcher = NotificationDispatcher(store, recipients)
        if config.smtp is not None:
            dispatcher.register_transport(NotificationChannel.EMAIL, EmailTransport(config.smtp))
        if config.twilio is not None:
            dispatcher.register_transport(NotificationChannel.SMS, SMSTransport(config.twilio))

        telegram = None
        if config.telegram_bot_token:
            telegram = TelegramClient(config.telegram_bot_token, config.telegram_timeout_seconds)

        executor = ActionExecutor(
            telegram_client=telegram,
            default_chat_id=config.telegram_default_chat_id,
            announce_command=config.announce_command,
            announce_timeout_seconds=config.announce_timeout_seconds,
            default_webhook_timeout_ms=config.default_webhook_timeout_ms,
        )

        return cls(
            store=store,
            source=SqliteConditionSource(config.source_db_path),
            dispatcher=dispatcher,
            action_executor=executor,
            tick_interval_seconds=config.tick_interval_seconds,
        )

    def start(self):
        self.scheduler.start()

    def shutdown(self):
        self.scheduler.shutdown()

    # =========================================================================
    # Definitions
    # =========================================================================

    def create_definition(self, data: dict[str, Any]) -> AlarmDefinition:
        """Create a definition from an API payload."""
        definition = AlarmDefinition.from_dict({"definition_id": str(uuid.uuid4()), **data})
        self.engine.create_definition(definition)
        self.scheduler.refresh()
        return definition

    def update_definition(self, definition_id: str, updates: dict[str, Any]) -> AlarmDefinition:
        definition = self.engine.update_definition(definition_id, updates)
        self.scheduler.refresh()
        return definition

    def delete_definition(self, definition_id: str):
        self.engine.delete_definition(definition_id)
        self.scheduler.refresh()

    def get_definition(self, definition_id: str) -> AlarmDefinition:
        return self.engine.get_definition(definition_id)

    def list_definitions(self, enabled: bool | None = None) -> list[AlarmDefinition]:
        return self.engine.list_definitions(enabled)

    # =========================================================================
    # Alarms
    # =========================================================================

    def get_active_alarms(self, site_id: str | None = None) -> list[Alarm]:
        return self.engine.get_active_alarms(site_id)

    def get_alarm_history(
        self,
        site_id: str | None = None,
        status: AlarmStatus | None = None,
        severity: AlarmSeverity | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> dict[str, Any]:
        alarms, total = self.engine.get_alarm_history(
            site_id, status, severity, start_date, end_date, limit, offset
        )
        return {"alarms": alarms, "total": total}

    def get_alarm(self, alarm_id: str) -> Alarm:
        return self.engine.get_alarm(alarm_id)

    def acknowledge_alarm(self, alarm_id: str, acknowledged_by: str, notes: str | None = None) -> Alarm:
        return self.engine.acknowledge_alarm(alarm_id, acknowledged_by, notes)

    def resolve_alarm(self, alarm_id: str, resolved_by: str, notes: str | None = None) -> Alarm:
        return self.engine.resolve_alarm(alarm_id, resolved_by, notes)

    def trigger_manual_check(self, definition_id: str) -> bool:
        return self.scheduler.run_manual_check(definition_id)

    def get_alarm_stats(self) -> dict[str, Any]:
        return self.engine.get_alarm_stats()

    def get_scheduler_status(self) -> dict[str, Any]:
        return {
            "running": self.scheduler.is_running,
            "scheduled_checks": self.scheduler.get_scheduled_checks(),
        }

    # =========================================================================
    # Notifications
    # =========================================================================

    def get_unread_notifications(self, user_id: str | None = None) -> list[AlarmNotification]:
        return self.dispatcher.get_unread_notifications(user_id)

    def get_unread_count(self, user_id: str | None = None) -> int:
        return self.dispatcher.get_unread_count(user_id)

    def mark_notification_read(self, notification_id: str) -> AlarmNotification:
        return self.dispatcher.mark_notification_read(notification_id)

    def mark_all_notifications_read(self, user_id: str | None = None) -> int:
        return self.dispatcher.mark_all_notifications_read(user_id)

    def retry_failed_notifications(self) -> int:
        return self.dispatcher.retry_failed_notifications()

    # =========================================================================
    # Actions
    # =========================================================================

    def get_action_types(self) -> list[dict]:
        return get_action_types()

    def test_action(self, action: ActionConfig | dict) -> ActionResult:
        if isinstance(action, dict):
            action = ActionConfig.from_dict(action)
        return self.action_executor.test_action(action)
