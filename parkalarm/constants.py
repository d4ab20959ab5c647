"""
Alarm Constants
===============
Centralized constants for the parking alarm engine.

This module provides a single source of truth for:
- Default condition values per alarm type
- Scheduler timing
- Outbound request timeouts
"""

from typing import Final

# =============================================================================
# CONDITION DEFAULTS
# =============================================================================

# NO_PAYMENT_DATA: hours without an ingested payment
DEFAULT_LOOKBACK_HOURS: Final[int] = 24

# SITE_OFFLINE: minutes without a vehicle movement
DEFAULT_NO_MOVEMENT_MINUTES: Final[int] = 120

# HIGH_ENFORCEMENT_CANDIDATES: new candidates within the window
DEFAULT_ENFORCEMENT_THRESHOLD: Final[int] = 50
DEFAULT_ENFORCEMENT_WINDOW_MINUTES: Final[int] = 60

# ANPR_POLLER_FAILURE: consecutive poll errors before alarming
DEFAULT_MAX_CONSECUTIVE_FAILURES: Final[int] = 3

# QR_WHITELIST_SYNC_FAILURE: errors kept in alarm details
MAX_REPORTED_SYNC_ERRORS: Final[int] = 10

# =============================================================================
# SCHEDULER
# =============================================================================

DEFAULT_TICK_INTERVAL_SECONDS: Final[int] = 60

# =============================================================================
# OUTBOUND TIMEOUTS
# =============================================================================

TELEGRAM_TIMEOUT_SECONDS: Final[float] = 10.0
WEBHOOK_TIMEOUT_MS: Final[int] = 30000
ANNOUNCE_TIMEOUT_SECONDS: Final[float] = 30.0
ANNOUNCE_DEFAULT_VOLUME: Final[int] = 50
