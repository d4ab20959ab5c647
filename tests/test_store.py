"""
Tests for Alarm Store
=====================
Tests for definition persistence, dedup insert, queries and cascades.
"""

import uuid
from datetime import datetime, timedelta

import pytest

from conftest import make_definition
from parkalarm.alarms import (
    ActionConfig,
    ActionType,
    Alarm,
    AlarmNotification,
    AlarmSeverity,
    AlarmStatus,
    AlarmType,
    NotificationChannel,
    NotificationStatus,
)


def make_alarm(definition, status=AlarmStatus.TRIGGERED, site_id=None, triggered_at=None):
    return Alarm(
        alarm_id=str(uuid.uuid4()),
        definition_id=definition.definition_id,
        status=status,
        severity=definition.severity,
        site_id=site_id,
        message="test alarm",
        triggered_at=triggered_at or datetime.now(),
    )


class TestDefinitions:
    """Tests for definition CRUD and lookups."""

    def test_round_trip(self, store):
        """A definition survives a save/load cycle with all fields."""
        definition = make_definition(
            AlarmType.HIGH_ENFORCEMENT_CANDIDATES,
            site_id="SITE01",
            conditions={"thresholdCount": 10},
            cron_schedule="*/30 * * * *",
            notification_channels=[NotificationChannel.IN_APP, NotificationChannel.EMAIL],
            actions=[ActionConfig("hook", ActionType.WEBHOOK, {"url": "http://x"})],
        )
        store.add_definition(definition)

        loaded = store.get_definition(definition.definition_id)
        assert loaded.name == definition.name
        assert loaded.type == AlarmType.HIGH_ENFORCEMENT_CANDIDATES
        assert loaded.conditions == {"thresholdCount": 10}
        assert loaded.notification_channels == [NotificationChannel.IN_APP, NotificationChannel.EMAIL]
        assert loaded.actions[0].type == ActionType.WEBHOOK
        assert loaded.actions[0].config["url"] == "http://x"
        assert loaded.is_scheduled

    def test_get_unknown_returns_none(self, store):
        assert store.get_definition("missing") is None

    def test_scheduled_definitions(self, store):
        """Only enabled definitions with a cron schedule are scheduled."""
        scheduled = store.add_definition(make_definition(cron_schedule="0 3 * * *"))
        store.add_definition(make_definition(cron_schedule="0 3 * * *", enabled=False))
        store.add_definition(make_definition(cron_schedule=None))

        ids = [d.definition_id for d in store.get_scheduled_definitions()]
        assert ids == [scheduled.definition_id]

    def test_find_event_definition(self, store):
        """Event lookup ignores scheduled and disabled definitions."""
        store.add_definition(make_definition(AlarmType.PAYMENT_SYNC_FAILURE, cron_schedule="0 * * * *"))
        store.add_definition(make_definition(AlarmType.PAYMENT_SYNC_FAILURE, enabled=False))
        event = store.add_definition(make_definition(AlarmType.PAYMENT_SYNC_FAILURE))

        found = store.find_event_definition(AlarmType.PAYMENT_SYNC_FAILURE)
        assert found.definition_id == event.definition_id
        assert store.find_event_definition(AlarmType.QR_WHITELIST_SYNC_FAILURE) is None

    def test_list_definitions_filter(self, store):
        store.add_definition(make_definition(name="B"))
        store.add_definition(make_definition(name="A", enabled=False))

        assert [d.name for d in store.list_definitions()] == ["A", "B"]
        assert [d.name for d in store.list_definitions(enabled=True)] == ["B"]


class TestAlarms:
    """Tests for alarm persistence."""

    def test_insert_unless_active(self, store):
        """A second insert while one is active returns the existing alarm."""
        definition = store.add_definition(make_definition())
        first, created = store.insert_alarm_unless_active(make_alarm(definition))
        assert created

        second, created = store.insert_alarm_unless_active(make_alarm(definition))
        assert not created
        assert second.alarm_id == first.alarm_id

    def test_insert_after_resolve(self, store):
        definition = store.add_definition(make_definition())
        first, _ = store.insert_alarm_unless_active(make_alarm(definition))
        first.status = AlarmStatus.RESOLVED
        store.update_alarm(first)

        second, created = store.insert_alarm_unless_active(make_alarm(definition))
        assert created
        assert second.alarm_id != first.alarm_id

    def test_query_site_filter_includes_site_agnostic(self, store):
        """Filtering by site also returns alarms without a site."""
        site_def = store.add_definition(make_definition())
        global_def = store.add_definition(make_definition())
        other_def = store.add_definition(make_definition())

        store.insert_alarm_unless_active(make_alarm(site_def, site_id="SITE01"))
        store.insert_alarm_unless_active(make_alarm(global_def, site_id=None))
        store.insert_alarm_unless_active(make_alarm(other_def, site_id="SITE02"))

        alarms, total = store.query_alarms(site_id="SITE01")
        assert total == 2
        assert {a.site_id for a in alarms} == {"SITE01", None}

    def test_query_pagination_newest_first(self, store):
        now = datetime.now()
        for i in range(5):
            definition = store.add_definition(make_definition())
            store.insert_alarm_unless_active(
                make_alarm(definition, triggered_at=now - timedelta(minutes=i))
            )

        page, total = store.query_alarms(limit=2, offset=1)
        assert total == 5
        assert len(page) == 2
        assert page[0].triggered_at > page[1].triggered_at
        assert page[0].triggered_at == now - timedelta(minutes=1)

    def test_delete_definition_cascades(self, store):
        """Deleting a definition removes its alarms and notifications."""
        definition = store.add_definition(make_definition())
        alarm, _ = store.insert_alarm_unless_active(make_alarm(definition))
        notification = store.add_notification(AlarmNotification(
            notification_id=str(uuid.uuid4()),
            alarm_id=alarm.alarm_id,
            channel=NotificationChannel.IN_APP,
        ))

        assert store.delete_definition(definition.definition_id) is True
        assert store.get_alarm(alarm.alarm_id) is None
        assert store.get_notification(notification.notification_id) is None
        assert store.delete_definition(definition.definition_id) is False

    def test_active_counts(self, store):
        critical = store.add_definition(make_definition(AlarmType.SITE_OFFLINE))
        warning = store.add_definition(make_definition(severity=AlarmSeverity.WARNING))
        resolved = store.add_definition(make_definition())

        store.insert_alarm_unless_active(make_alarm(critical))
        store.insert_alarm_unless_active(make_alarm(warning, status=AlarmStatus.ACKNOWLEDGED))
        store.insert_alarm_unless_active(make_alarm(resolved, status=AlarmStatus.RESOLVED))

        assert store.count_by_status() == {"TRIGGERED": 1, "ACKNOWLEDGED": 1, "RESOLVED": 1}
        assert store.count_active_by_severity() == {"CRITICAL": 1, "WARNING": 1}
        assert store.count_active_by_type() == {"SITE_OFFLINE": 1, "NO_PAYMENT_DATA": 1}


class TestNotificationQueries:
    """Tests for notification read-side queries."""

    @pytest.fixture
    def alarm(self, store):
        definition = store.add_definition(make_definition())
        alarm, _ = store.insert_alarm_unless_active(make_alarm(definition))
        return alarm

    def _add(self, store, alarm, channel=NotificationChannel.IN_APP,
             status=NotificationStatus.SENT, user_id=None):
        return store.add_notification(AlarmNotification(
            notification_id=str(uuid.uuid4()),
            alarm_id=alarm.alarm_id,
            channel=channel,
            status=status,
            user_id=user_id,
        ))

    def test_unread_scoping(self, store, alarm):
        """Unread means sent, in-app, unread and for the user or everyone."""
        self._add(store, alarm, user_id=None)
        self._add(store, alarm, user_id="alice")
        self._add(store, alarm, user_id="bob")
        self._add(store, alarm, channel=NotificationChannel.EMAIL)
        self._add(store, alarm, status=NotificationStatus.FAILED)

        assert store.count_unread_notifications("alice") == 2
        assert store.count_unread_notifications() == 3
        assert len(store.list_unread_notifications("bob")) == 2

    def test_mark_all_read(self, store, alarm):
        self._add(store, alarm)
        self._add(store, alarm, user_id="alice")
        self._add(store, alarm, user_id="bob")

        assert store.mark_all_read(datetime.now(), "alice") == 2
        assert store.count_unread_notifications("alice") == 0
        assert store.count_unread_notifications("bob") == 1
