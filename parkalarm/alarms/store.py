"""
Alarm Store
===========
SQLite persistence for alarm definitions, alarms and notifications.

Features:
- Definition CRUD and the scheduled / event-driven lookups
- Atomic "create unless an active alarm exists" insert
- Filtered, paginated alarm queries and aggregate counts
- Notification read-side queries
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from .models import (
    ACTIVE_STATUSES,
    ActionConfig,
    Alarm,
    AlarmDefinition,
    AlarmNotification,
    AlarmSeverity,
    AlarmStatus,
    AlarmType,
    NotificationChannel,
    NotificationStatus,
    from_iso,
    to_iso,
)

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = tuple(s.value for s in ACTIVE_STATUSES)

SCHEMA = """
CREATE TABLE IF NOT EXISTS alarm_definitions (
    definition_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    type TEXT NOT NULL,
    severity TEXT NOT NULL DEFAULT 'WARNING',
    site_id TEXT,
    conditions TEXT NOT NULL DEFAULT '{}',
    cron_schedule TEXT,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    notification_channels TEXT NOT NULL DEFAULT '["IN_APP"]',
    actions TEXT NOT NULL DEFAULT '[]',
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_alarm_definitions_type ON alarm_definitions(type);
CREATE INDEX IF NOT EXISTS idx_alarm_definitions_enabled ON alarm_definitions(enabled);

CREATE TABLE IF NOT EXISTS alarms (
    alarm_id TEXT PRIMARY KEY,
    definition_id TEXT NOT NULL
        REFERENCES alarm_definitions(definition_id) ON DELETE CASCADE,
    status TEXT NOT NULL,
    severity TEXT NOT NULL,
    site_id TEXT,
    message TEXT NOT NULL,
    details TEXT,
    triggered_at TIMESTAMP NOT NULL,
    acknowledged_at TIMESTAMP,
    acknowledged_by TEXT,
    acknowledge_notes TEXT,
    resolved_at TIMESTAMP,
    resolved_by TEXT,
    resolve_notes TEXT
);

CREATE INDEX IF NOT EXISTS idx_alarms_triggered_at ON alarms(triggered_at DESC);
CREATE INDEX IF NOT EXISTS idx_alarms_status ON alarms(status);
CREATE INDEX IF NOT EXISTS idx_alarms_site_id ON alarms(site_id);

-- At most one non-terminal alarm per definition
CREATE UNIQUE INDEX IF NOT EXISTS idx_alarms_one_active
    ON alarms(definition_id) WHERE status IN ('TRIGGERED', 'ACKNOWLEDGED');

CREATE TABLE IF NOT EXISTS alarm_notifications (
    notification_id TEXT PRIMARY KEY,
    alarm_id TEXT NOT NULL REFERENCES alarms(alarm_id) ON DELETE CASCADE,
    channel TEXT NOT NULL,
    status TEXT NOT NULL,
    user_id TEXT,
    recipient TEXT,
    sent_at TIMESTAMP,
    read_at TIMESTAMP,
    metadata TEXT,
    created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_alarm_notifications_alarm_id ON alarm_notifications(alarm_id);
CREATE INDEX IF NOT EXISTS idx_alarm_notifications_status ON alarm_notifications(status);
"""


class AlarmStore:
    """
    Persistent storage for the alarm engine.

    Uses one SQLite connection per operation, serialized by a process lock.
    """

    def __init__(self, db_path: str = "data/alarms/alarms.db"):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._init_database()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()

    def _init_database(self):
        """Initialize the database schema."""
        with self._lock, self._connect() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    # =========================================================================
    # Definitions
    # =========================================================================

    def add_definition(self, definition: AlarmDefinition) -> AlarmDefinition:
        with self._lock, self._connect() as conn:
            conn.execute("""
                INSERT INTO alarm_definitions (
                    definition_id, name, description, type, severity, site_id,
                    conditions, cron_schedule, enabled, notification_channels,
                    actions, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, self._definition_values(definition))
            conn.commit()
        return definition

    def save_definition(self, definition: AlarmDefinition) -> AlarmDefinition:
        """Overwrite every column of an existing definition."""
        values = self._definition_values(definition)
        with self._lock, self._connect() as conn:
            conn.execute("""
                UPDATE alarm_definitions SET
                    name = ?, description = ?, type = ?, severity = ?, site_id = ?,
                    conditions = ?, cron_schedule = ?, enabled = ?,
                    notification_channels = ?, actions = ?, created_at = ?, updated_at = ?
                WHERE definition_id = ?
            """, values[1:] + values[:1])
            conn.commit()
        return definition

    def delete_definition(self, definition_id: str) -> bool:
        """Delete a definition together with its alarms and notifications."""
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM alarm_definitions WHERE definition_id = ?",
                (definition_id,),
            )
            conn.commit()
            return cursor.rowcount > 0

    def get_definition(self, definition_id: str) -> AlarmDefinition | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM alarm_definitions WHERE definition_id = ?",
                (definition_id,),
            ).fetchone()
            return self._row_to_definition(row) if row else None

    def list_definitions(self, enabled: bool | None = None) -> list[AlarmDefinition]:
        query = "SELECT * FROM alarm_definitions"
        values: list[Any] = []
        if enabled is not None:
            query += " WHERE enabled = ?"
            values.append(enabled)
        query += " ORDER BY name ASC"

        with self._lock, self._connect() as conn:
            return [self._row_to_definition(row) for row in conn.execute(query, values)]

    def get_scheduled_definitions(self) -> list[AlarmDefinition]:
        """Enabled definitions that carry a cron schedule."""
        with self._lock, self._connect() as conn:
            rows = conn.execute("""
                SELECT * FROM alarm_definitions
                WHERE enabled = 1 AND cron_schedule IS NOT NULL AND cron_schedule != ''
                ORDER BY name ASC
            """).fetchall()
            return [self._row_to_definition(row) for row in rows]

    def find_event_definition(self, alarm_type: AlarmType) -> AlarmDefinition | None:
        """First enabled, non-scheduled definition of the given type."""
        with self._lock, self._connect() as conn:
            row = conn.execute("""
                SELECT * FROM alarm_definitions
                WHERE type = ? AND enabled = 1
                  AND (cron_schedule IS NULL OR cron_schedule = '')
                ORDER BY created_at ASC
                LIMIT 1
            """, (alarm_type.value,)).fetchone()
            return self._row_to_definition(row) if row else None

    # =========================================================================
    # Alarms
    # =========================================================================

    def get_active_alarm_for_definition(self, definition_id: str) -> Alarm | None:
        with self._lock, self._connect() as conn:
            return self._select_active(conn, definition_id)

    def insert_alarm_unless_active(self, alarm: Alarm) -> tuple[Alarm, bool]:
        """
        Insert an alarm unless its definition already has an active one.

        The check and the insert share one write transaction.

        Returns:
            (alarm, created) where alarm is the existing active alarm when
            created is False
        """
        with self._lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            existing = self._select_active(conn, alarm.definition_id)
            if existing:
                conn.rollback()
                return existing, False

            try:
                conn.execute("""
                    INSERT INTO alarms (
                        alarm_id, definition_id, status, severity, site_id, message,
                        details, triggered_at, acknowledged_at, acknowledged_by,
                        acknowledge_notes, resolved_at, resolved_by, resolve_notes
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    alarm.alarm_id,
                    alarm.definition_id,
                    alarm.status.value,
                    alarm.severity.value,
                    alarm.site_id,
                    alarm.message,
                    json.dumps(alarm.details, default=str),
                    to_iso(alarm.triggered_at),
                    to_iso(alarm.acknowledged_at),
                    alarm.acknowledged_by,
                    alarm.acknowledge_notes,
                    to_iso(alarm.resolved_at),
                    alarm.resolved_by,
                    alarm.resolve_notes,
                ))
                conn.commit()
            except sqlite3.IntegrityError:
                # Another process won the race on the partial unique index
                conn.rollback()
                existing = self._select_active(conn, alarm.definition_id)
                if existing is None:
                    raise
                return existing, False

        return alarm, True

    def update_alarm(self, alarm: Alarm) -> Alarm:
        """Persist the status and acknowledgement/resolution fields."""
        with self._lock, self._connect() as conn:
            conn.execute("""
                UPDATE alarms SET
                    status = ?,
                    acknowledged_at = ?, acknowledged_by = ?, acknowledge_notes = ?,
                    resolved_at = ?, resolved_by = ?, resolve_notes = ?
                WHERE alarm_id = ?
            """, (
                alarm.status.value,
                to_iso(alarm.acknowledged_at),
                alarm.acknowledged_by,
                alarm.acknowledge_notes,
                to_iso(alarm.resolved_at),
                alarm.resolved_by,
                alarm.resolve_notes,
                alarm.alarm_id,
            ))
            conn.commit()
        return alarm

    def get_alarm(self, alarm_id: str) -> Alarm | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM alarms WHERE alarm_id = ?", (alarm_id,)
            ).fetchone()
            return self._row_to_alarm(row) if row else None

    def query_alarms(
        self,
        statuses: list[AlarmStatus] | None = None,
        site_id: str | None = None,
        severity: AlarmSeverity | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = 100,
        offset: int = 0,
    ) -> tuple[list[Alarm], int]:
        """
        Query alarms newest first.

        A site filter also matches site-agnostic alarms.

        Returns:
            (page of alarms, total matching count)
        """
        conditions = []
        values: list[Any] = []

        if statuses:
            conditions.append(f"status IN ({', '.join('?' for _ in statuses)})")
            values.extend(s.value for s in statuses)

        if site_id:
            conditions.append("(site_id = ? OR site_id IS NULL)")
            values.append(site_id)

        if severity:
            conditions.append("severity = ?")
            values.append(severity.value)

        if since:
            conditions.append("triggered_at >= ?")
            values.append(since.isoformat())

        if until:
            conditions.append("triggered_at <= ?")
            values.append(until.isoformat())

        where_clause = " AND ".join(conditions) if conditions else "1=1"

        with self._lock, self._connect() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM alarms WHERE {where_clause}", values
            ).fetchone()[0]

            query = f"SELECT * FROM alarms WHERE {where_clause} ORDER BY triggered_at DESC"
            page_values = list(values)
            if limit is not None:
                query += " LIMIT ? OFFSET ?"
                page_values += [limit, offset]

            alarms = [self._row_to_alarm(row) for row in conn.execute(query, page_values)]

        return alarms, total

    def count_by_status(self) -> dict[str, int]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT status, COUNT(*) FROM alarms GROUP BY status")
            return {row[0]: row[1] for row in rows}

    def count_active_by_severity(self) -> dict[str, int]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT severity, COUNT(*) FROM alarms WHERE status IN (?, ?) GROUP BY severity",
                _ACTIVE_VALUES,
            )
            return {row[0]: row[1] for row in rows}

    def count_active_by_type(self) -> dict[str, int]:
        with self._lock, self._connect() as conn:
            rows = conn.execute("""
                SELECT d.type, COUNT(*)
                FROM alarms a JOIN alarm_definitions d ON d.definition_id = a.definition_id
                WHERE a.status IN (?, ?)
                GROUP BY d.type
            """, _ACTIVE_VALUES)
            return {row[0]: row[1] for row in rows}

    # =========================================================================
    # Notifications
    # =========================================================================

    def add_notification(self, notification: AlarmNotification) -> AlarmNotification:
        with self._lock, self._connect() as conn:
            conn.execute("""
                INSERT INTO alarm_notifications (
                    notification_id, alarm_id, channel, status, user_id, recipient,
                    sent_at, read_at, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                notification.notification_id,
                notification.alarm_id,
                notification.channel.value,
                notification.status.value,
                notification.user_id,
                notification.recipient,
                to_iso(notification.sent_at),
                to_iso(notification.read_at),
                json.dumps(notification.metadata, default=str),
                to_iso(notification.created_at),
            ))
            conn.commit()
        return notification

    def update_notification(self, notification: AlarmNotification) -> AlarmNotification:
        with self._lock, self._connect() as conn:
            conn.execute("""
                UPDATE alarm_notifications SET
                    status = ?, recipient = ?, sent_at = ?, read_at = ?, metadata = ?
                WHERE notification_id = ?
            """, (
                notification.status.value,
                notification.recipient,
                to_iso(notification.sent_at),
                to_iso(notification.read_at),
                json.dumps(notification.metadata, default=str),
                notification.notification_id,
            ))
            conn.commit()
        return notification

    def get_notification(self, notification_id: str) -> AlarmNotification | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM alarm_notifications WHERE notification_id = ?",
                (notification_id,),
            ).fetchone()
            return self._row_to_notification(row) if row else None

    def list_notifications(
        self,
        status: NotificationStatus | None = None,
        alarm_id: str | None = None,
    ) -> list[AlarmNotification]:
        conditions = []
        values: list[Any] = []

        if status:
            conditions.append("status = ?")
            values.append(status.value)

        if alarm_id:
            conditions.append("alarm_id = ?")
            values.append(alarm_id)

        where_clause = " AND ".join(conditions) if conditions else "1=1"

        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM alarm_notifications WHERE {where_clause} "
                "ORDER BY created_at ASC, rowid ASC",
                values,
            )
            return [self._row_to_notification(row) for row in rows]

    def _unread_filter(self, user_id: str | None) -> tuple[str, list[Any]]:
        clause = "channel = ? AND status = ? AND read_at IS NULL"
        values: list[Any] = [NotificationChannel.IN_APP.value, NotificationStatus.SENT.value]
        if user_id:
            clause += " AND (user_id = ? OR user_id IS NULL)"
            values.append(user_id)
        return clause, values

    def list_unread_notifications(self, user_id: str | None = None) -> list[AlarmNotification]:
        clause, values = self._unread_filter(user_id)
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM alarm_notifications WHERE {clause} "
                "ORDER BY created_at DESC, rowid DESC",
                values,
            )
            return [self._row_to_notification(row) for row in rows]

    def count_unread_notifications(self, user_id: str | None = None) -> int:
        clause, values = self._unread_filter(user_id)
        with self._lock, self._connect() as conn:
            return conn.execute(
                f"SELECT COUNT(*) FROM alarm_notifications WHERE {clause}", values
            ).fetchone()[0]

    def mark_all_read(self, read_at: datetime, user_id: str | None = None) -> int:
        clause, values = self._unread_filter(user_id)
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE alarm_notifications SET status = ?, read_at = ? WHERE {clause}",
                [NotificationStatus.READ.value, read_at.isoformat()] + values,
            )
            conn.commit()
            return cursor.rowcount

    # =========================================================================
    # Row mapping
    # =========================================================================

    def _select_active(self, conn: sqlite3.Connection, definition_id: str) -> Alarm | None:
        row = conn.execute(
            "SELECT * FROM alarms WHERE definition_id = ? AND status IN (?, ?) LIMIT 1",
            (definition_id, *_ACTIVE_VALUES),
        ).fetchone()
        return self._row_to_alarm(row) if row else None

    def _definition_values(self, definition: AlarmDefinition) -> tuple:
        return (
            definition.definition_id,
            definition.name,
            definition.description,
            definition.type.value,
            definition.severity.value,
            definition.site_id,
            json.dumps(definition.conditions),
            definition.cron_schedule or None,
            definition.enabled,
            json.dumps([c.value for c in definition.notification_channels]),
            json.dumps([a.to_dict() for a in definition.actions]),
            to_iso(definition.created_at),
            to_iso(definition.updated_at),
        )

    def _row_to_definition(self, row: sqlite3.Row) -> AlarmDefinition:
        return AlarmDefinition(
            definition_id=row["definition_id"],
            name=row["name"],
            description=row["description"],
            type=AlarmType(row["type"]),
            severity=AlarmSeverity(row["severity"]),
            site_id=row["site_id"],
            conditions=json.loads(row["conditions"] or "{}"),
            cron_schedule=row["cron_schedule"],
            enabled=bool(row["enabled"]),
            notification_channels=[
                NotificationChannel(c) for c in json.loads(row["notification_channels"] or "[]")
            ],
            actions=[ActionConfig.from_dict(a) for a in json.loads(row["actions"] or "[]")],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )

    def _row_to_alarm(self, row: sqlite3.Row) -> Alarm:
        return Alarm(
            alarm_id=row["alarm_id"],
            definition_id=row["definition_id"],
            status=AlarmStatus(row["status"]),
            severity=AlarmSeverity(row["severity"]),
            site_id=row["site_id"],
            message=row["message"],
            details=json.loads(row["details"]) if row["details"] else {},
            triggered_at=from_iso(row["triggered_at"]),
            acknowledged_at=from_iso(row["acknowledged_at"]),
            acknowledged_by=row["acknowledged_by"],
            acknowledge_notes=row["acknowledge_notes"],
            resolved_at=from_iso(row["resolved_at"]),
            resolved_by=row["resolved_by"],
            resolve_notes=row["resolve_notes"],
        )

    def _row_to_notification(self, row: sqlite3.Row) -> AlarmNotification:
        return AlarmNotification(
            notification_id=row["notification_id"],
            alarm_id=row["alarm_id"],
            channel=NotificationChannel(row["channel"]),
            status=NotificationStatus(row["status"]),
            user_id=row["user_id"],
            recipient=row["recipient"],
            sent_at=from_iso(row["sent_at"]),
            read_at=from_iso(row["read_at"]),
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=from_iso(row["created_at"]),
        )
