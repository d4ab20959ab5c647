"""
Engine Configuration
====================
Settings for the alarm engine, read from config/alarms.yaml and the
environment.

Precedence (lowest first):
- Built-in defaults
- config/alarms.yaml
- Environment variables (a .env file is loaded by the runner)
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .alarms.channels import EmailConfig, SMSConfig
from .constants import (
    ANNOUNCE_TIMEOUT_SECONDS,
    DEFAULT_TICK_INTERVAL_SECONDS,
    TELEGRAM_TIMEOUT_SECONDS,
    WEBHOOK_TIMEOUT_MS,
)
from .utils import CONFIG_DIR, DATA_DIR, PROJECT_ROOT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = CONFIG_DIR / "alarms.yaml"

# Environment variable -> EngineConfig field
ENV_OVERRIDES = {
    "TELEGRAM_BOT_TOKEN": "telegram_bot_token",
    "TELEGRAM_ALERT_CHAT_ID": "telegram_default_chat_id",
    "ALARM_DB_PATH": "db_path",
    "ALARM_SOURCE_DB_PATH": "source_db_path",
    "ANNOUNCE_COMMAND": "announce_command",
    "ALARM_EMAIL_RECIPIENT": "email_recipient",
    "ALARM_SMS_RECIPIENT": "sms_recipient",
    "ALARM_LOG_LEVEL": "log_level",
}

# Relative values resolve against the project root, not the working directory
PATH_FIELDS = {"db_path", "source_db_path"}


@dataclass
class EngineConfig:
    """Configuration for the alarm engine."""
    # Storage
    db_path: str = str(DATA_DIR / "alarms" / "alarms.db")
    source_db_path: str = str(DATA_DIR / "parking.db")

    # Scheduler
    tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS

    # Actions
    telegram_bot_token: str | None = None
    telegram_default_chat_id: str | None = None
    telegram_timeout_seconds: float = TELEGRAM_TIMEOUT_SECONDS
    announce_command: str | None = None
    announce_timeout_seconds: float = ANNOUNCE_TIMEOUT_SECONDS
    default_webhook_timeout_ms: int = WEBHOOK_TIMEOUT_MS

    # Notifications
    email_recipient: str | None = None
    sms_recipient: str | None = None
    smtp: EmailConfig | None = None
    twilio: SMSConfig | None = None

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "EngineConfig":
        """Build an EngineConfig from parsed YAML."""
        database = raw.get("database", {}) or {}
        scheduler = raw.get("scheduler", {}) or {}
        telegram = raw.get("telegram", {}) or {}
        announcement = raw.get("announcement", {}) or {}
        webhook = raw.get("webhook", {}) or {}
        notifications = raw.get("notifications", {}) or {}
        logging_cfg = raw.get("logging", {}) or {}

        defaults = cls()
        smtp = notifications.get("smtp")
        twilio = notifications.get("twilio")

        return cls(
            db_path=_project_path(database.get("path", defaults.db_path)),
            source_db_path=_project_path(database.get("source_path", defaults.source_db_path)),
            tick_interval_seconds=float(
                scheduler.get("tick_interval_seconds", defaults.tick_interval_seconds)
            ),
            telegram_bot_token=telegram.get("bot_token"),
            telegram_default_chat_id=_optional_str(telegram.get("default_chat_id")),
            telegram_timeout_seconds=float(
                telegram.get("timeout_seconds", defaults.telegram_timeout_seconds)
            ),
            announce_command=announcement.get("command"),
            announce_timeout_seconds=float(
                announcement.get("timeout_seconds", defaults.announce_timeout_seconds)
            ),
            default_webhook_timeout_ms=int(
                webhook.get("timeout_ms", defaults.default_webhook_timeout_ms)
            ),
            email_recipient=notifications.get("email_recipient"),
            sms_recipient=_optional_str(notifications.get("sms_recipient")),
            smtp=EmailConfig(**{"name": "email", **smtp}) if smtp else None,
            twilio=SMSConfig(**{"name": "sms", **twilio}) if twilio else None,
            log_level=str(logging_cfg.get("level", defaults.log_level)).upper(),
        )

    def apply_environment(self, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        """Overlay non-empty environment variables onto this config."""
        environ = os.environ if environ is None else environ
        for variable, field_name in ENV_OVERRIDES.items():
            value = environ.get(variable)
            if value:
                if field_name in PATH_FIELDS:
                    value = _project_path(value)
                setattr(self, field_name, value)
        self.log_level = self.log_level.upper()
        return self


def _project_path(value: str | Path) -> str:
    path = Path(value).expanduser()
    return str(path if path.is_absolute() else PROJECT_ROOT / path)


def _optional_str(value: Any) -> str | None:
    # Chat ids and phone numbers are often written unquoted in YAML
    return None if value is None else str(value)


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """
    Load engine configuration.

    Args:
        path: YAML file (defaults to config/alarms.yaml)
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ValueError: the YAML document is not a mapping
    """
    config_file = Path(path) if path else DEFAULT_CONFIG_FILE

    if config_file.exists():
        with open(config_file) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"{config_file.name} must define a mapping at the top level")
        config = EngineConfig.from_mapping(raw)
        logger.debug(f"Loaded alarm config from {config_file}")
    else:
        logger.info(f"Alarm config not found at {config_file}; using defaults")
        config = EngineConfig()

    return config.apply_environment(environ)
