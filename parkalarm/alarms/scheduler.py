"""
Alarm Scheduler
===============
Periodic evaluation of cron-scheduled alarm definitions.

Features:
- In-memory schedule rebuilt from the store on refresh
- Minute-granularity tick on a background thread
- Cron subset: "M H * * *", "*/N * * * *", "M */N * * *"
- Per-entry error isolation and status reporting
"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ..constants import DEFAULT_TICK_INTERVAL_SECONDS
from .checker import ConditionChecker
from .models import AlarmDefinition, AlarmNotFoundError, to_iso
from .store import AlarmStore

logger = logging.getLogger(__name__)


def _parse_step(field: str) -> int | None:
    if not field.startswith("*/"):
        return None
    step = field[2:]
    if not step.isdigit() or int(step) == 0:
        raise ValueError(f"invalid step '{field}'")
    return int(step)


def calculate_next_run(cron_expression: str, now: datetime | None = None) -> datetime | None:
    """
    Calculate the next run time for a cron expression.

    Only the minute and hour fields are interpreted; day-of-month, month and
    day-of-week are accepted but ignored. Expressions outside the supported
    patterns run at the top of the next hour.

    Args:
        cron_expression: Five-field cron string
        now: Reference time (defaults to the current time)

    Returns:
        Next run time, or None for an invalid expression

    Examples:
        >>> calculate_next_run("0 3 * * *", datetime(2024, 1, 1, 2, 0))
        datetime.datetime(2024, 1, 1, 3, 0)
        >>> calculate_next_run("*/15 * * * *", datetime(2024, 1, 1, 10, 7))
        datetime.datetime(2024, 1, 1, 10, 15)
    """
    now = now or datetime.now()
    parts = (cron_expression or "").split()
    if len(parts) != 5:
        logger.warning(f"Invalid cron expression: {cron_expression!r}")
        return None

    minute, hour = parts[0], parts[1]
    base = now.replace(second=0, microsecond=0)

    try:
        if minute != "*" and hour != "*" and not minute.startswith("*/") and not hour.startswith("*/"):
            target_minute, target_hour = int(minute), int(hour)
            if not (0 <= target_minute < 60 and 0 <= target_hour < 24):
                raise ValueError("time out of range")

            next_run = base.replace(hour=target_hour, minute=target_minute)
            if next_run <= now:
                next_run += timedelta(days=1)
            return next_run

        minute_step = _parse_step(minute)
        if minute_step is not None:
            current = now.minute
            next_minute = math.ceil(current / minute_step) * minute_step
            if next_minute == current:
                next_minute += minute_step
            return base.replace(minute=0) + timedelta(minutes=next_minute)

        hour_step = _parse_step(hour)
        if hour_step is not None:
            at_minute = int(minute) if minute.isdigit() else 0
            next_hour = math.ceil((now.hour + 1) / hour_step) * hour_step
            next_run = base.replace(minute=at_minute)
            if next_hour >= 24:
                return next_run.replace(hour=0) + timedelta(days=1)
            return next_run.replace(hour=next_hour)
    except ValueError as e:
        logger.warning(f"Invalid cron expression: {cron_expression!r} ({e})")
        return None

    return (now + timedelta(hours=1)).replace(minute=0, second=0, microsecond=0)


@dataclass
class ScheduledCheck:
    """A scheduled definition and its run state."""
    definition: AlarmDefinition
    next_run: datetime | None
    last_run: datetime | None = None
    last_error: str | None = None
    error_count: int = 0

    def is_due(self, now: datetime) -> bool:
        return self.next_run is not None and self.next_run <= now

    def to_dict(self) -> dict:
        return {
            "definition_id": self.definition.definition_id,
            "name": self.definition.name,
            "cron_schedule": self.definition.cron_schedule,
            "last_run": to_iso(self.last_run),
            "next_run": to_iso(self.next_run),
            "last_error": self.last_error,
            "error_count": self.error_count,
        }


class AlarmScheduler:
    """
    Runs scheduled definitions through the condition checker.

    The schedule map is replaced wholesale on refresh, so a tick already in
    progress keeps iterating the snapshot it started with.
    """

    def __init__(
        self,
        store: AlarmStore,
        checker: ConditionChecker,
        interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS,
    ):
        self._store = store
        self._checker = checker
        self._interval = interval_seconds

        self._checks: dict[str, ScheduledCheck] = {}
        self._tick_lock = threading.Lock()

        self._running = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Schedule
    # =========================================================================

    def refresh(self, now: datetime | None = None) -> int:
        """
        Reload scheduled definitions from the store.

        Returns:
            Number of scheduled definitions
        """
        now = now or datetime.now()
        previous = self._checks
        checks = {}

        for definition in self._store.get_scheduled_definitions():
            old = previous.get(definition.definition_id)
            # An entry whose cron is unchanged keeps its pending run
            if (
                old is not None
                and old.next_run is not None
                and old.definition.cron_schedule == definition.cron_schedule
            ):
                next_run = old.next_run
            else:
                next_run = calculate_next_run(definition.cron_schedule, now)

            check = ScheduledCheck(definition=definition, next_run=next_run)
            if old is not None:
                check.last_run = old.last_run
                check.last_error = old.last_error
                check.error_count = old.error_count
            checks[definition.definition_id] = check

        self._checks = checks
        logger.info(f"Loaded {len(checks)} scheduled alarm definitions")
        return len(checks)

    def tick(self, now: datetime | None = None) -> list[str]:
        """
        Evaluate every due entry once.

        Returns:
            IDs of the definitions evaluated
        """
        now = now or datetime.now()
        evaluated = []

        with self._tick_lock:
            for definition_id, check in list(self._checks.items()):
                if not check.is_due(now):
                    continue

                logger.debug(f"Running scheduled check: {check.definition.name}")
                try:
                    self._checker.evaluate(check.definition, now)
                    check.last_error = None
                except Exception as e:
                    check.last_error = str(e) or e.__class__.__name__
                    check.error_count += 1
                    logger.error(f"Failed to run scheduled check {check.definition.name}: {e}")

                check.last_run = now
                check.next_run = calculate_next_run(check.definition.cron_schedule, now)
                evaluated.append(definition_id)

        return evaluated

    def run_manual_check(self, definition_id: str) -> bool:
        """
        Evaluate a definition immediately, outside its schedule.

        Raises:
            AlarmNotFoundError: unknown definition id
        """
        definition = self._store.get_definition(definition_id)
        if definition is None:
            raise AlarmNotFoundError(f"Alarm definition {definition_id} not found")

        triggered = self._checker.evaluate(definition)
        logger.info(f"Manual check of {definition.name}: {'triggered' if triggered else 'ok'}")
        return triggered

    def get_scheduled_checks(self) -> list[dict[str, Any]]:
        return [check.to_dict() for check in self._checks.values()]

    # =========================================================================
    # Background loop
    # =========================================================================

    def start(self):
        """Refresh the schedule and start ticking on a daemon thread."""
        if self._running:
            logger.warning("Alarm scheduler already running")
            return

        self.refresh()
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="alarm-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Alarm scheduler started (interval {self._interval}s)")

    def shutdown(self, timeout: float | None = 5.0):
        """Stop the background thread and wait for the current tick."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Alarm scheduler stopped")

    def _run_loop(self):
        while not self._stop_event.wait(self._seconds_until_next_tick()):
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Alarm scheduler tick error: {e}")

    def _seconds_until_next_tick(self) -> float:
        now = datetime.now().timestamp()
        return self._interval - (now % self._interval)
