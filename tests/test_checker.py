"""
Tests for Condition Checker
===========================
Tests for scheduled condition evaluation and event-driven triggers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_definition
from parkalarm.alarms import (
    AlarmStatus,
    AlarmType,
    ConditionChecker,
    AlarmScheduler,
    PollerFailureTracker,
)
from parkalarm.alarms.sources import to_local_naive

NOW = datetime(2024, 3, 1, 3, 0)


@pytest.fixture
def checker(engine, source):
    return ConditionChecker(engine, source)


class TestEvaluatorTable:
    """Every alarm type has an evaluator."""

    def test_all_types_covered(self, checker):
        assert checker.supported_types == set(AlarmType)

    @pytest.mark.parametrize("alarm_type", [
        AlarmType.ANPR_POLLER_FAILURE,
        AlarmType.PAYMENT_SYNC_FAILURE,
        AlarmType.QR_WHITELIST_SYNC_FAILURE,
        AlarmType.CUSTOM,
    ])
    def test_event_driven_types_never_fire_on_schedule(self, checker, store, alarm_type):
        definition = store.add_definition(make_definition(alarm_type))
        assert checker.evaluate(definition, NOW) is False

    def test_disabled_definition_not_evaluated(self, checker, store):
        definition = store.add_definition(make_definition(enabled=False))
        assert checker.evaluate(definition, NOW) is False
        _, total = store.query_alarms()
        assert total == 0


class TestNoPaymentData:
    """Tests for the NO_PAYMENT_DATA check."""

    def test_triggers_without_payments(self, checker, store, source_db):
        """No payments in 24h at 03:00 raises a critical alarm."""
        source_db.add_payment(NOW - timedelta(hours=30))
        definition = store.add_definition(make_definition(
            AlarmType.NO_PAYMENT_DATA, conditions={"lookbackHours": 24},
        ))

        assert checker.evaluate(definition, NOW) is True

        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.status == AlarmStatus.TRIGGERED
        assert alarm.message == "No payment data received in the last 24 hours across all sites"
        assert alarm.details == {"lookbackHours": 24, "paymentsFound": 0}

    def test_recent_payment_suppresses(self, checker, store, source_db):
        source_db.add_payment(NOW - timedelta(hours=2))
        definition = store.add_definition(make_definition(AlarmType.NO_PAYMENT_DATA))
        assert checker.evaluate(definition, NOW) is False

    def test_site_scoped(self, checker, store, source_db):
        """Payments at another site do not count."""
        source_db.add_payment(NOW - timedelta(hours=1), site_id="SITE02")
        definition = store.add_definition(make_definition(AlarmType.NO_PAYMENT_DATA, site_id="SITE01"))

        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.message.endswith("for site SITE01")

    def test_default_lookback(self, checker, store, source_db):
        source_db.add_payment(NOW - timedelta(hours=23))
        definition = store.add_definition(make_definition(AlarmType.NO_PAYMENT_DATA))
        assert checker.evaluate(definition, NOW) is False


class TestSiteOffline:
    """Tests for the SITE_OFFLINE check."""

    @pytest.fixture
    def definition(self, store):
        return store.add_definition(make_definition(
            AlarmType.SITE_OFFLINE, site_id="SITE01", conditions={"noMovementMinutes": 120},
        ))

    def test_stale_site_triggers(self, checker, store, source_db, definition):
        last = NOW - timedelta(minutes=150)
        source_db.add_movement(last)

        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.message == "Site SITE01 appears offline - no movements in 120 minutes"
        assert alarm.details == {
            "noMovementMinutes": 120,
            "lastMovementTime": last.isoformat(),
            "siteId": "SITE01",
        }

    def test_recent_movement_suppresses(self, checker, source_db, definition):
        source_db.add_movement(NOW - timedelta(minutes=90))
        assert checker.evaluate(definition, NOW) is False

    def test_no_movements_ever(self, checker, store, definition):
        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.details["lastMovementTime"] == "never"

    def test_requires_site(self, checker, store):
        definition = store.add_definition(make_definition(AlarmType.SITE_OFFLINE))
        assert checker.evaluate(definition, NOW) is False


class TestHighEnforcementCandidates:
    """Tests for the HIGH_ENFORCEMENT_CANDIDATES check."""

    @pytest.fixture
    def definition(self, store):
        return store.add_definition(make_definition(
            AlarmType.HIGH_ENFORCEMENT_CANDIDATES,
            conditions={"thresholdCount": 3, "timeWindowMinutes": 60},
        ))

    def test_threshold_reached(self, checker, store, source_db, definition):
        for minutes in (5, 10, 20):
            source_db.add_decision(NOW - timedelta(minutes=minutes))

        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.message == "High enforcement queue: 3 candidates in last 60 minutes"
        assert alarm.details == {"thresholdCount": 3, "actualCount": 3, "timeWindowMinutes": 60}

    def test_only_new_candidates_in_window_count(self, checker, source_db, definition):
        source_db.add_decision(NOW - timedelta(minutes=5))
        source_db.add_decision(NOW - timedelta(minutes=90))
        source_db.add_decision(NOW - timedelta(minutes=5), status="REVIEWED")
        source_db.add_decision(NOW - timedelta(minutes=5), outcome="COMPLIANT")

        assert checker.evaluate(definition, NOW) is False


class TestEventTriggers:
    """Tests for event-driven trigger entry points."""

    def test_anpr_poller_failure(self, checker, store):
        definition = store.add_definition(make_definition(AlarmType.ANPR_POLLER_FAILURE))

        alarm = checker.trigger_anpr_poller_failure("SITE01", 3, "timeout")

        assert alarm.definition_id == definition.definition_id
        assert alarm.site_id == "SITE01"
        assert alarm.message == "ANPR poller failure at site SITE01: 3 consecutive errors"
        assert alarm.details == {"siteId": "SITE01", "errorCount": 3, "lastError": "timeout"}

    def test_payment_sync_failure(self, checker, store):
        store.add_definition(make_definition(AlarmType.PAYMENT_SYNC_FAILURE))
        alarm = checker.trigger_payment_sync_failure("p1", "ParkPay", "401 Unauthorized")
        assert alarm.message == "Payment sync failure for provider ParkPay: 401 Unauthorized"
        assert alarm.details["providerId"] == "p1"

    def test_qr_whitelist_errors_truncated(self, checker, store):
        store.add_definition(make_definition(AlarmType.QR_WHITELIST_SYNC_FAILURE))
        errors = [f"row {i}" for i in range(25)]

        alarm = checker.trigger_qr_whitelist_sync_failure(25, errors)

        assert alarm.message == "QR Whitelist sync failed with 25 errors"
        assert alarm.details["errors"] == errors[:10]

    def test_no_definition_is_noop(self, checker):
        assert checker.trigger_payment_sync_failure("p1", "ParkPay", "boom") is None


class TestPollerFailureTracker:
    """Tests for consecutive poller failure counting."""

    def test_triggers_at_threshold(self, checker, store):
        store.add_definition(make_definition(
            AlarmType.ANPR_POLLER_FAILURE, conditions={"maxConsecutiveFailures": 2},
        ))
        tracker = PollerFailureTracker(checker)

        assert tracker.record_failure("SITE01", "timeout") is None
        alarm = tracker.record_failure("SITE01", "refused")

        assert alarm is not None
        assert alarm.details["errorCount"] == 2
        assert alarm.details["lastError"] == "refused"

    def test_success_resets(self, checker, store):
        store.add_definition(make_definition(AlarmType.ANPR_POLLER_FAILURE))
        tracker = PollerFailureTracker(checker)

        tracker.record_failure("SITE01", "e1")
        tracker.record_failure("SITE01", "e2")
        tracker.record_success("SITE01")

        assert tracker.failure_count("SITE01") == 0
        assert tracker.record_failure("SITE01", "e3") is None


class TestConditionParameters:
    """Condition values arrive from JSON and may be strings or null."""

    def test_numeric_string_lookback(self, checker, store):
        definition = store.add_definition(make_definition(
            AlarmType.NO_PAYMENT_DATA, conditions={"lookbackHours": "12"},
        ))

        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.details == {"lookbackHours": 12, "paymentsFound": 0}

    def test_null_lookback_uses_default(self, checker, store, source_db):
        source_db.add_payment(NOW - timedelta(hours=23))
        definition = store.add_definition(make_definition(
            AlarmType.NO_PAYMENT_DATA, conditions={"lookbackHours": None},
        ))
        assert checker.evaluate(definition, NOW) is False

    def test_unparseable_value_uses_default(self, checker, store):
        definition = store.add_definition(make_definition(
            AlarmType.NO_PAYMENT_DATA, conditions={"lookbackHours": "soon"},
        ))

        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.details["lookbackHours"] == 24

    def test_string_no_movement_minutes(self, checker, store, source_db):
        source_db.add_movement(NOW - timedelta(minutes=90))
        definition = store.add_definition(make_definition(
            AlarmType.SITE_OFFLINE, site_id="SITE01", conditions={"noMovementMinutes": "60"},
        ))

        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.details["noMovementMinutes"] == 60

    def test_null_no_movement_minutes(self, checker, store, source_db):
        source_db.add_movement(NOW - timedelta(minutes=90))
        definition = store.add_definition(make_definition(
            AlarmType.SITE_OFFLINE, site_id="SITE01", conditions={"noMovementMinutes": None},
        ))
        assert checker.evaluate(definition, NOW) is False

    def test_string_enforcement_thresholds(self, checker, store, source_db):
        for minutes in (5, 10):
            source_db.add_decision(NOW - timedelta(minutes=minutes))
        definition = store.add_definition(make_definition(
            AlarmType.HIGH_ENFORCEMENT_CANDIDATES,
            conditions={"thresholdCount": "2", "timeWindowMinutes": "30.0"},
        ))

        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.details == {"thresholdCount": 2, "actualCount": 2, "timeWindowMinutes": 30}

    def test_null_enforcement_thresholds(self, checker, store, source_db):
        source_db.add_decision(NOW - timedelta(minutes=5))
        definition = store.add_definition(make_definition(
            AlarmType.HIGH_ENFORCEMENT_CANDIDATES,
            conditions={"thresholdCount": None, "timeWindowMinutes": ""},
        ))
        assert checker.evaluate(definition, NOW) is False

    def test_string_max_consecutive_failures(self, checker, store):
        store.add_definition(make_definition(
            AlarmType.ANPR_POLLER_FAILURE, conditions={"maxConsecutiveFailures": "2"},
        ))
        tracker = PollerFailureTracker(checker)

        assert tracker.record_failure("SITE01", "e1") is None
        assert tracker.record_failure("SITE01", "e2") is not None

    def test_manual_check_with_null_condition(self, store, engine, source):
        definition = store.add_definition(make_definition(
            AlarmType.NO_PAYMENT_DATA, conditions={"lookbackHours": None},
        ))
        scheduler = AlarmScheduler(store, ConditionChecker(engine, source))

        assert scheduler.run_manual_check(definition.definition_id) is True


class TestStoredTimestampFormats:
    """Source rows are compared by instant, whatever their text format."""

    def test_space_separated_payment_counts(self, checker, store, source_db):
        ingested = (NOW - timedelta(hours=1)).strftime("%Y-%m-%d %H:%M:%S")
        source_db._insert("INSERT INTO payments VALUES (?, ?)", ("SITE01", ingested))
        definition = store.add_definition(make_definition(
            AlarmType.NO_PAYMENT_DATA, conditions={"lookbackHours": 2},
        ))

        assert checker.evaluate(definition, NOW) is False

    def test_space_separated_payment_outside_window(self, checker, store, source_db):
        ingested = (NOW - timedelta(hours=3)).strftime("%Y-%m-%d %H:%M:%S")
        source_db._insert("INSERT INTO payments VALUES (?, ?)", ("SITE01", ingested))
        definition = store.add_definition(make_definition(
            AlarmType.NO_PAYMENT_DATA, conditions={"lookbackHours": 2},
        ))

        assert checker.evaluate(definition, NOW) is True

    def test_movement_with_utc_offset(self, checker, store, source_db):
        moved = (NOW - timedelta(minutes=10)).astimezone(timezone.utc)
        source_db._insert("INSERT INTO movements VALUES (?, ?)", ("SITE01", moved.isoformat()))
        definition = store.add_definition(make_definition(
            AlarmType.SITE_OFFLINE, site_id="SITE01", conditions={"noMovementMinutes": 120},
        ))

        assert checker.evaluate(definition, NOW) is False

    def test_movement_with_zulu_suffix(self, checker, store, source_db):
        moved = (NOW - timedelta(minutes=150)).astimezone(timezone.utc)
        stamp = moved.replace(tzinfo=None).isoformat() + "Z"
        source_db._insert("INSERT INTO movements VALUES (?, ?)", ("SITE01", stamp))
        definition = store.add_definition(make_definition(
            AlarmType.SITE_OFFLINE, site_id="SITE01", conditions={"noMovementMinutes": 120},
        ))

        assert checker.evaluate(definition, NOW) is True
        alarm = store.get_active_alarm_for_definition(definition.definition_id)
        assert alarm.details["lastMovementTime"] == (NOW - timedelta(minutes=150)).isoformat()

    def test_mixed_decision_formats(self, checker, store, source_db):
        source_db.add_decision(NOW - timedelta(minutes=5))
        source_db._insert(
            "INSERT INTO decisions VALUES (?, ?, ?, ?)",
            ("SITE01", "ENFORCEMENT_CANDIDATE", "NEW",
             (NOW - timedelta(minutes=10)).strftime("%Y-%m-%d %H:%M:%S")),
        )
        definition = store.add_definition(make_definition(
            AlarmType.HIGH_ENFORCEMENT_CANDIDATES,
            conditions={"thresholdCount": 2, "timeWindowMinutes": 60},
        ))

        assert checker.evaluate(definition, NOW) is True


class TestToLocalNaive:
    """Tests for timestamp normalisation."""

    def test_naive_passthrough(self):
        assert to_local_naive("2024-03-01 02:00:00") == datetime(2024, 3, 1, 2, 0)
        assert to_local_naive(datetime(2024, 3, 1, 2, 0)) == datetime(2024, 3, 1, 2, 0)

    def test_aware_converted_to_local(self):
        aware = NOW.astimezone(timezone.utc)
        assert to_local_naive(aware) == NOW
        assert to_local_naive(aware.isoformat()) == NOW

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_unparseable(self, value):
        assert to_local_naive(value) is None
