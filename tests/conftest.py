"""Shared fixtures for alarm engine tests."""

import shutil
import sqlite3
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from parkalarm.alarms import (
    ActionResult,
    AlarmDefinition,
    AlarmEngine,
    AlarmSeverity,
    AlarmStore,
    AlarmType,
    NotificationChannel,
    NotificationDispatcher,
    SqliteConditionSource,
)
from parkalarm.alarms.channels import NotificationTransport, TransportConfig


class SourceDatabase:
    """Operational tables the condition checks read from."""

    def __init__(self, path: Path):
        self.path = path
        with sqlite3.connect(path) as conn:
            conn.executescript("""
                CREATE TABLE payments (site_id TEXT, ingested_at TEXT);
                CREATE TABLE movements (site_id TEXT, timestamp TEXT);
                CREATE TABLE decisions (site_id TEXT, outcome TEXT, status TEXT, created_at TEXT);
            """)

    def _insert(self, sql: str, values: tuple):
        with sqlite3.connect(self.path) as conn:
            conn.execute(sql, values)

    def add_payment(self, ingested_at: datetime, site_id: str = "SITE01"):
        self._insert("INSERT INTO payments VALUES (?, ?)", (site_id, ingested_at.isoformat()))

    def add_movement(self, timestamp: datetime, site_id: str = "SITE01"):
        self._insert("INSERT INTO movements VALUES (?, ?)", (site_id, timestamp.isoformat()))

    def add_decision(
        self,
        created_at: datetime,
        site_id: str = "SITE01",
        outcome: str = "ENFORCEMENT_CANDIDATE",
        status: str = "NEW",
    ):
        self._insert(
            "INSERT INTO decisions VALUES (?, ?, ?, ?)",
            (site_id, outcome, status, created_at.isoformat()),
        )


class FakeTransport(NotificationTransport):
    """Transport that records sends and returns a scripted outcome."""

    def __init__(self, outcomes: list[bool] | None = None):
        super().__init__(TransportConfig(name="fake"))
        self.outcomes = list(outcomes or [True])
        self.sent: list[tuple[str, str, str]] = []

    def send(self, recipient: str, subject: str, body: str) -> bool:
        self.sent.append((recipient, subject, body))
        ok = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if not ok:
            self._fail("fake delivery failed")
        return ok

    def test(self) -> bool:
        return True


class RecordingExecutor:
    """Stands in for ActionExecutor and records what it was asked to run."""

    def __init__(self):
        self.calls: list[tuple[Any, list]] = []

    def execute(self, alarm, actions, context=None):
        self.calls.append((alarm, actions))
        return [
            ActionResult(action_name=a.name, action_type=a.type, success=True)
            for a in actions if a.enabled
        ]


def make_definition(
    alarm_type: AlarmType = AlarmType.NO_PAYMENT_DATA,
    name: str | None = None,
    **kwargs,
) -> AlarmDefinition:
    return AlarmDefinition(
        definition_id=str(uuid.uuid4()),
        name=name or f"{alarm_type.value} {uuid.uuid4().hex[:6]}",
        type=alarm_type,
        severity=kwargs.pop("severity", AlarmSeverity.CRITICAL),
        **kwargs,
    )


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp = tempfile.mkdtemp()
    yield Path(temp)
    shutil.rmtree(temp)


@pytest.fixture
def store(temp_dir):
    return AlarmStore(str(temp_dir / "alarms.db"))


@pytest.fixture
def source_db(temp_dir):
    return SourceDatabase(temp_dir / "parking.db")


@pytest.fixture
def source(source_db):
    return SqliteConditionSource(str(source_db.path))


@pytest.fixture
def dispatcher(store):
    return NotificationDispatcher(store, {NotificationChannel.EMAIL: "ops@example.com"})


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def engine(store, dispatcher, executor):
    return AlarmEngine(store, dispatcher, executor)
