"""
Condition Checker
=================
Evaluates alarm definitions against operational data.

Features:
- Scheduled checks: missing payment data, offline sites, enforcement backlog
- Event-driven triggers for poller and sync failures
- Consecutive-failure tracking for ANPR pollers
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from ..constants import (
    DEFAULT_ENFORCEMENT_THRESHOLD,
    DEFAULT_ENFORCEMENT_WINDOW_MINUTES,
    DEFAULT_LOOKBACK_HOURS,
    DEFAULT_MAX_CONSECUTIVE_FAILURES,
    DEFAULT_NO_MOVEMENT_MINUTES,
    MAX_REPORTED_SYNC_ERRORS,
)
from .engine import AlarmEngine
from .models import Alarm, AlarmDefinition, AlarmType
from .sources import (
    DECISION_STATUS_NEW,
    ENFORCEMENT_CANDIDATE,
    ConditionDataSource,
    to_local_naive,
)

logger = logging.getLogger(__name__)


def _condition(definition: AlarmDefinition, key: str, default: int) -> int:
    """
    Read a numeric condition parameter.

    Missing, empty and zero values fall back to the default. Numeric strings
    are accepted; anything else logs a warning and uses the default.
    """
    value = definition.conditions.get(key)
    if value is None or value == "" or value == 0:
        return default

    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        logger.warning(
            f"Definition {definition.name}: invalid {key}={value!r}; using default {default}"
        )
        return default

    return number or default


class ConditionChecker:
    """
    Evaluates a definition and triggers an alarm when its condition holds.

    Event-driven types (poller and sync failures, custom) are never true on
    a schedule; they fire through the trigger_* methods instead.
    """

    def __init__(self, engine: AlarmEngine, source: ConditionDataSource):
        self._engine = engine
        self._source = source

        self._evaluators: dict[AlarmType, Callable[[AlarmDefinition, datetime], bool]] = {
            AlarmType.NO_PAYMENT_DATA: self._check_no_payment_data,
            AlarmType.SITE_OFFLINE: self._check_site_offline,
            AlarmType.HIGH_ENFORCEMENT_CANDIDATES: self._check_high_enforcement_candidates,
            AlarmType.ANPR_POLLER_FAILURE: self._event_driven,
            AlarmType.PAYMENT_SYNC_FAILURE: self._event_driven,
            AlarmType.QR_WHITELIST_SYNC_FAILURE: self._event_driven,
            AlarmType.CUSTOM: self._event_driven,
        }

    @property
    def engine(self) -> AlarmEngine:
        return self._engine

    @property
    def supported_types(self) -> set[AlarmType]:
        return set(self._evaluators)

    def evaluate(self, definition: AlarmDefinition, now: datetime | None = None) -> bool:
        """
        Evaluate a definition's condition.

        Returns:
            True when the condition held and an alarm was triggered (or was
            already active)
        """
        if not definition.enabled:
            return False

        evaluator = self._evaluators.get(definition.type)
        if evaluator is None:
            logger.warning(f"Unknown alarm type: {definition.type}")
            return False

        return evaluator(definition, now or datetime.now())

    # =========================================================================
    # Scheduled conditions
    # =========================================================================

    def _check_no_payment_data(self, definition: AlarmDefinition, now: datetime) -> bool:
        lookback_hours = _condition(definition, "lookbackHours", DEFAULT_LOOKBACK_HOURS)
        since = now - timedelta(hours=lookback_hours)

        payment_count = self._source.count_payments(since, definition.site_id)
        if payment_count > 0:
            return False

        scope = f" for site {definition.site_id}" if definition.site_id else " across all sites"
        self._engine.trigger_alarm(
            definition,
            f"No payment data received in the last {lookback_hours} hours{scope}",
            {"lookbackHours": lookback_hours, "paymentsFound": 0},
        )
        return True

    def _check_site_offline(self, definition: AlarmDefinition, now: datetime) -> bool:
        if not definition.site_id:
            logger.warning(f"SITE_OFFLINE definition {definition.name} has no site; skipping")
            return False

        no_movement_minutes = _condition(definition, "noMovementMinutes", DEFAULT_NO_MOVEMENT_MINUTES)
        cutoff = now - timedelta(minutes=no_movement_minutes)

        last_movement = to_local_naive(self._source.latest_movement_time(definition.site_id))
        if last_movement is not None and last_movement >= cutoff:
            return False

        self._engine.trigger_alarm(
            definition,
            f"Site {definition.site_id} appears offline - no movements in {no_movement_minutes} minutes",
            {
                "noMovementMinutes": no_movement_minutes,
                "lastMovementTime": last_movement.isoformat() if last_movement else "never",
                "siteId": definition.site_id,
            },
        )
        return True

    def _check_high_enforcement_candidates(self, definition: AlarmDefinition, now: datetime) -> bool:
        threshold = _condition(definition, "thresholdCount", DEFAULT_ENFORCEMENT_THRESHOLD)
        window_minutes = _condition(definition, "timeWindowMinutes", DEFAULT_ENFORCEMENT_WINDOW_MINUTES)
        since = now - timedelta(minutes=window_minutes)

        count = self._source.count_decisions(
            ENFORCEMENT_CANDIDATE, DECISION_STATUS_NEW, since, definition.site_id
        )
        if count < threshold:
            return False

        scope = f" at site {definition.site_id}" if definition.site_id else ""
        self._engine.trigger_alarm(
            definition,
            f"High enforcement queue: {count} candidates in last {window_minutes} minutes{scope}",
            {
                "thresholdCount": threshold,
                "actualCount": count,
                "timeWindowMinutes": window_minutes,
            },
        )
        return True

    def _event_driven(self, definition: AlarmDefinition, now: datetime) -> bool:
        return False

    # =========================================================================
    # Event-driven triggers
    # =========================================================================

    def trigger_anpr_poller_failure(
        self, site_id: str, error_count: int, last_error: str
    ) -> Alarm | None:
        return self._engine.trigger_event_alarm(
            AlarmType.ANPR_POLLER_FAILURE,
            f"ANPR poller failure at site {site_id}: {error_count} consecutive errors",
            {"siteId": site_id, "errorCount": error_count, "lastError": last_error},
            site_id=site_id,
        )

    def trigger_payment_sync_failure(
        self, provider_id: str, provider_name: str, error: str
    ) -> Alarm | None:
        return self._engine.trigger_event_alarm(
            AlarmType.PAYMENT_SYNC_FAILURE,
            f"Payment sync failure for provider {provider_name}: {error}",
            {"providerId": provider_id, "providerName": provider_name, "error": error},
        )

    def trigger_qr_whitelist_sync_failure(self, error_count: int, errors: list[str]) -> Alarm | None:
        return self._engine.trigger_event_alarm(
            AlarmType.QR_WHITELIST_SYNC_FAILURE,
            f"QR Whitelist sync failed with {error_count} errors",
            {"errorCount": error_count, "errors": list(errors[:MAX_REPORTED_SYNC_ERRORS])},
        )


class PollerFailureTracker:
    """
    Counts consecutive ANPR poller failures per site.

    Once a site's count reaches the event definition's maxConsecutiveFailures
    the poller failure alarm is triggered; dedup keeps repeated failures from
    raising further alarms while one is active. A success resets the count.
    """

    def __init__(self, checker: ConditionChecker):
        self._checker = checker
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    def record_failure(self, site_id: str, error: str) -> Alarm | None:
        with self._lock:
            count = self._failures.get(site_id, 0) + 1
            self._failures[site_id] = count

        if count < self._threshold():
            logger.debug(f"ANPR poller failure {count} at site {site_id}: {error}")
            return None

        return self._checker.trigger_anpr_poller_failure(site_id, count, error)

    def record_success(self, site_id: str):
        with self._lock:
            self._failures.pop(site_id, None)

    def failure_count(self, site_id: str) -> int:
        return self._failures.get(site_id, 0)

    def _threshold(self) -> int:
        definition = self._checker.engine.store.find_event_definition(AlarmType.ANPR_POLLER_FAILURE)
        if definition is None:
            return DEFAULT_MAX_CONSECUTIVE_FAILURES
        return _condition(definition, "maxConsecutiveFailures", DEFAULT_MAX_CONSECUTIVE_FAILURES)
