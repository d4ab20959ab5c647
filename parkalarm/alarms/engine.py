"""
Alarm Engine
============
Alarm lifecycle management and trigger fan-out.

Features:
- Deduplicated triggering (one active alarm per definition)
- TRIGGERED -> ACKNOWLEDGED -> RESOLVED state machine
- Notification and action fan-out on new alarms
- Alarm history, stats and definition management
"""

import logging
import threading
import uuid
from datetime import datetime
from typing import Any

from .actions import ActionExecutor
from .models import (
    ACTIVE_STATUSES,
    ActionConfig,
    Alarm,
    AlarmDefinition,
    AlarmNotFoundError,
    AlarmSeverity,
    AlarmStatus,
    AlarmType,
    InvalidAlarmTransitionError,
)
from .notifications import NotificationDispatcher
from .store import AlarmStore

logger = logging.getLogger(__name__)

# Definition fields callers may change through update_definition
UPDATABLE_FIELDS = (
    "name",
    "description",
    "type",
    "severity",
    "site_id",
    "conditions",
    "cron_schedule",
    "enabled",
    "notification_channels",
    "actions",
)


class AlarmEngine:
    """
    Sole writer of Alarm rows.

    Triggering is deduplicated per definition: while an alarm is TRIGGERED
    or ACKNOWLEDGED, further triggers return it unchanged and dispatch
    nothing.
    """

    def __init__(
        self,
        store: AlarmStore,
        dispatcher: NotificationDispatcher,
        action_executor: ActionExecutor | None = None,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._action_executor = action_executor

        self._definition_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def store(self) -> AlarmStore:
        return self._store

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    def _lock_for(self, definition_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._definition_locks.get(definition_id)
            if lock is None:
                lock = self._definition_locks[definition_id] = threading.Lock()
            return lock

    # =========================================================================
    # Triggering
    # =========================================================================

    def trigger_alarm(
        self,
        definition: AlarmDefinition,
        message: str,
        details: dict[str, Any] | None = None,
        site_id: str | None = None,
    ) -> Alarm:
        """
        Trigger an alarm for a definition.

        Args:
            definition: The definition that fired
            message: Human-readable alarm message
            details: Structured context stored with the alarm
            site_id: Site override; defaults to the definition's site

        Returns:
            The new alarm, or the already-active alarm for the definition
        """
        alarm = Alarm(
            alarm_id=str(uuid.uuid4()),
            definition_id=definition.definition_id,
            status=AlarmStatus.TRIGGERED,
            severity=definition.severity,
            site_id=site_id or definition.site_id,
            message=message,
            details=details or {},
            triggered_at=datetime.now(),
        )

        with self._lock_for(definition.definition_id):
            alarm, created = self._store.insert_alarm_unless_active(alarm)

        if not created:
            logger.debug(f"Alarm already active for definition {definition.name}: {alarm.alarm_id}")
            return alarm

        logger.warning(f"Alarm triggered: {definition.name} [{alarm.severity.value}] {message}")

        self._dispatcher.dispatch(alarm, definition.notification_channels)

        if definition.actions and self._action_executor is not None:
            results = self._action_executor.execute(alarm, definition.actions)
            failed = [r for r in results if not r.success]
            for result in failed:
                logger.error(f"Action {result.action_name} failed for alarm {alarm.alarm_id}: {result.error}")
            logger.info(
                f"Executed {len(results)} actions for alarm {alarm.alarm_id} "
                f"({len(results) - len(failed)} succeeded)"
            )

        return alarm

    def trigger_event_alarm(
        self,
        alarm_type: AlarmType,
        message: str,
        details: dict[str, Any] | None = None,
        site_id: str | None = None,
    ) -> Alarm | None:
        """Trigger through the enabled, non-scheduled definition of a type."""
        definition = self._store.find_event_definition(alarm_type)
        if definition is None:
            logger.info(f"No event definition configured for {alarm_type.value}; skipping trigger")
            return None

        return self.trigger_alarm(definition, message, details, site_id)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def acknowledge_alarm(self, alarm_id: str, acknowledged_by: str, notes: str | None = None) -> Alarm:
        """
        Acknowledge a triggered alarm.

        Raises:
            AlarmNotFoundError: unknown alarm id
            InvalidAlarmTransitionError: alarm is not TRIGGERED
        """
        alarm = self.get_alarm(alarm_id)
        if alarm.status != AlarmStatus.TRIGGERED:
            raise InvalidAlarmTransitionError(
                f"Alarm {alarm_id} is {alarm.status.value}; only TRIGGERED alarms can be acknowledged"
            )

        alarm.status = AlarmStatus.ACKNOWLEDGED
        alarm.acknowledged_at = datetime.now()
        alarm.acknowledged_by = acknowledged_by
        alarm.acknowledge_notes = notes
        self._store.update_alarm(alarm)

        logger.info(f"Alarm {alarm_id} acknowledged by {acknowledged_by}")
        return alarm

    def resolve_alarm(self, alarm_id: str, resolved_by: str, notes: str | None = None) -> Alarm:
        """
        Resolve an active alarm.

        Raises:
            AlarmNotFoundError: unknown alarm id
            InvalidAlarmTransitionError: alarm is already RESOLVED
        """
        alarm = self.get_alarm(alarm_id)
        if alarm.status == AlarmStatus.RESOLVED:
            raise InvalidAlarmTransitionError(f"Alarm {alarm_id} is already resolved")

        alarm.status = AlarmStatus.RESOLVED
        alarm.resolved_at = datetime.now()
        alarm.resolved_by = resolved_by
        alarm.resolve_notes = notes
        self._store.update_alarm(alarm)

        logger.info(f"Alarm {alarm_id} resolved by {resolved_by}")
        return alarm

    # =========================================================================
    # Queries
    # =========================================================================

    def get_alarm(self, alarm_id: str) -> Alarm:
        alarm = self._store.get_alarm(alarm_id)
        if alarm is None:
            raise AlarmNotFoundError(f"Alarm {alarm_id} not found")
        return alarm

    def get_active_alarms(self, site_id: str | None = None) -> list[Alarm]:
        """Active alarms, newest first. A site filter includes site-agnostic alarms."""
        alarms, _ = self._store.query_alarms(
            statuses=list(ACTIVE_STATUSES), site_id=site_id, limit=None
        )
        return alarms

    def get_alarm_history(
        self,
        site_id: str | None = None,
        status: AlarmStatus | None = None,
        severity: AlarmSeverity | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Alarm], int]:
        """
        Page through alarm history.

        Returns:
            (alarms, total matching count)
        """
        return self._store.query_alarms(
            statuses=[status] if status else None,
            site_id=site_id,
            severity=severity,
            since=start_date,
            until=end_date,
            limit=limit,
            offset=offset,
        )

    def get_alarm_stats(self) -> dict[str, Any]:
        by_status = self._store.count_by_status()
        triggered = by_status.get(AlarmStatus.TRIGGERED.value, 0)
        acknowledged = by_status.get(AlarmStatus.ACKNOWLEDGED.value, 0)

        return {
            "total": triggered + acknowledged,
            "triggered": triggered,
            "acknowledged": acknowledged,
            "resolved": by_status.get(AlarmStatus.RESOLVED.value, 0),
            "by_severity": self._store.count_active_by_severity(),
            "by_type": self._store.count_active_by_type(),
        }

    # =========================================================================
    # Definitions
    # =========================================================================

    def create_definition(self, definition: AlarmDefinition) -> AlarmDefinition:
        self._store.add_definition(definition)
        logger.info(f"Created alarm definition: {definition.name} ({definition.definition_id})")
        return definition

    def update_definition(self, definition_id: str, updates: dict[str, Any]) -> AlarmDefinition:
        """
        Apply field updates to a definition.

        Raises:
            AlarmNotFoundError: unknown definition id
            ValueError: an update names a field that cannot be changed
        """
        definition = self.get_definition(definition_id)

        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update definition fields: {', '.join(sorted(unknown))}")

        # from_dict accepts enum members and plain strings alike
        merged = {**definition.to_dict(), **updates}
        if "actions" in updates:
            merged["actions"] = [
                a.to_dict() if isinstance(a, ActionConfig) else a for a in updates["actions"]
            ]
        definition = AlarmDefinition.from_dict(merged)
        definition.updated_at = datetime.now()

        self._store.save_definition(definition)
        logger.info(f"Updated alarm definition: {definition.name} ({definition_id})")
        return definition

    def delete_definition(self, definition_id: str):
        """Delete a definition and, by cascade, its alarms and notifications."""
        if not self._store.delete_definition(definition_id):
            raise AlarmNotFoundError(f"Alarm definition {definition_id} not found")
        logger.info(f"Deleted alarm definition: {definition_id}")

    def get_definition(self, definition_id: str) -> AlarmDefinition:
        definition = self._store.get_definition(definition_id)
        if definition is None:
            raise AlarmNotFoundError(f"Alarm definition {definition_id} not found")
        return definition

    def list_definitions(self, enabled: bool | None = None) -> list[AlarmDefinition]:
        return self._store.list_definitions(enabled=enabled)
