"""
Default Alarm Definitions
=========================
Stock definitions installed on a fresh deployment.
"""

import logging
import uuid

from .models import AlarmDefinition
from .store import AlarmStore

logger = logging.getLogger(__name__)

DEFAULT_DEFINITIONS: list[dict] = [
    {
        "name": "No Payment Data by 3am",
        "description": "Alerts when no payment data has been received in the last 24 hours. Runs daily at 3am.",
        "type": "NO_PAYMENT_DATA",
        "severity": "CRITICAL",
        "conditions": {"checkTime": "03:00", "lookbackHours": 24},
        "cron_schedule": "0 3 * * *",
        "enabled": True,
    },
    {
        "name": "ANPR Poller Failures",
        "description": "Alerts when the ANPR poller has had multiple consecutive failures. Event-based trigger.",
        "type": "ANPR_POLLER_FAILURE",
        "severity": "CRITICAL",
        "conditions": {"maxConsecutiveFailures": 3},
        "cron_schedule": None,
        "enabled": True,
    },
    {
        "name": "High Enforcement Queue",
        "description": (
            "Alerts when there are more than 50 enforcement candidates in the last hour. "
            "Runs every 30 minutes."
        ),
        "type": "HIGH_ENFORCEMENT_CANDIDATES",
        "severity": "WARNING",
        "conditions": {"thresholdCount": 50, "timeWindowMinutes": 60},
        "cron_schedule": "*/30 * * * *",
        "enabled": True,
    },
    {
        "name": "Site Offline Alert",
        "description": "Alerts when a site has not received any movements for 2 hours. Runs every 15 minutes.",
        "type": "SITE_OFFLINE",
        "severity": "CRITICAL",
        "conditions": {"noMovementMinutes": 120},
        "cron_schedule": "*/15 * * * *",
        "enabled": False,  # Needs a site before it can be enabled
    },
    {
        "name": "Payment Sync Failure",
        "description": "Alerts when a payment provider sync has failed. Event-based trigger.",
        "type": "PAYMENT_SYNC_FAILURE",
        "severity": "WARNING",
        "conditions": {},
        "cron_schedule": None,
        "enabled": True,
    },
    {
        "name": "QR Whitelist Sync Failure",
        "description": "Alerts when QR whitelist ingestion fails. Event-based trigger.",
        "type": "QR_WHITELIST_SYNC_FAILURE",
        "severity": "WARNING",
        "conditions": {},
        "cron_schedule": None,
        "enabled": True,
    },
]


def seed_default_definitions(store: AlarmStore) -> list[AlarmDefinition]:
    """
    Install the default definitions, skipping names that already exist.

    Returns:
        The definitions that were created
    """
    existing = {definition.name for definition in store.list_definitions()}
    created = []

    for data in DEFAULT_DEFINITIONS:
        if data["name"] in existing:
            logger.info(f"Skipping existing definition: {data['name']}")
            continue

        definition = AlarmDefinition.from_dict({
            **data,
            "definition_id": str(uuid.uuid4()),
            "notification_channels": ["IN_APP"],
        })
        store.add_definition(definition)
        created.append(definition)
        logger.info(f"Created definition: {definition.name}")

    return created
