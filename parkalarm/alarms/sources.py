"""
Condition Data Sources
======================
Read-only queries the condition checker runs against operational data.

The engine never writes these tables; they are filled by the payment,
ANPR and enforcement pipelines.
"""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

ENFORCEMENT_CANDIDATE = "ENFORCEMENT_CANDIDATE"
DECISION_STATUS_NEW = "NEW"


def to_local_naive(value: Any) -> datetime | None:
    """
    Parse a stored timestamp into naive local time.

    Accepts ISO-8601 with either a `T` or a space separator, an optional
    `Z` or numeric offset, and datetime objects. Unparseable values give None.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _sql_local_ts(value: Any) -> str | None:
    parsed = to_local_naive(value)
    return parsed.isoformat(timespec="microseconds") if parsed else None


class ConditionDataSource(ABC):
    """Queries required by the condition checker."""

    @abstractmethod
    def count_payments(self, since: datetime, site_id: str | None = None) -> int:
        """Count payments ingested after `since`."""

    @abstractmethod
    def latest_movement_time(self, site_id: str) -> datetime | None:
        """Timestamp of the most recent movement at a site."""

    @abstractmethod
    def count_decisions(
        self,
        outcome: str,
        status: str,
        since: datetime,
        site_id: str | None = None,
    ) -> int:
        """Count decisions with the given outcome and status created after `since`."""


class SqliteConditionSource(ConditionDataSource):
    """
    Condition source backed by the operational SQLite database.

    Expected tables:
    - payments(site_id, ingested_at)
    - movements(site_id, timestamp)
    - decisions(site_id, outcome, status, created_at)
    """

    def __init__(self, db_path: str):
        self._db_path = Path(db_path)

    def _query_one(self, sql: str, values: list[Any]) -> Any:
        # Read-only URI so a missing database is an error, not a new empty file
        uri = f"{self._db_path.resolve().as_uri()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True)
        # Stored formats vary; compare every timestamp as naive local time
        conn.create_function("local_ts", 1, _sql_local_ts, deterministic=True)
        try:
            return conn.execute(sql, values).fetchone()[0]
        finally:
            conn.close()

    def count_payments(self, since: datetime, site_id: str | None = None) -> int:
        sql = "SELECT COUNT(*) FROM payments WHERE local_ts(ingested_at) > ?"
        values: list[Any] = [_sql_local_ts(since)]
        if site_id:
            sql += " AND site_id = ?"
            values.append(site_id)
        return self._query_one(sql, values)

    def latest_movement_time(self, site_id: str) -> datetime | None:
        value = self._query_one(
            "SELECT MAX(local_ts(timestamp)) FROM movements WHERE site_id = ?", [site_id]
        )
        return datetime.fromisoformat(value) if value else None

    def count_decisions(
        self,
        outcome: str,
        status: str,
        since: datetime,
        site_id: str | None = None,
    ) -> int:
        sql = (
            "SELECT COUNT(*) FROM decisions "
            "WHERE outcome = ? AND status = ? AND local_ts(created_at) > ?"
        )
        values: list[Any] = [outcome, status, _sql_local_ts(since)]
        if site_id:
            sql += " AND site_id = ?"
            values.append(site_id)
        return self._query_one(sql, values)