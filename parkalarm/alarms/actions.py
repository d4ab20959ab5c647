"""
Alarm Actions
=============
Side-effect actions executed when an alarm triggers.

Features:
- Telegram chat messages
- Webhook calls with templated bodies
- Audio announcements through an external command
- {{dotted.path}} template interpolation
- Per-action failure isolation and a dry-run test mode
"""

import json
import logging
import re
import subprocess
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any

from ..constants import ANNOUNCE_DEFAULT_VOLUME, ANNOUNCE_TIMEOUT_SECONDS, WEBHOOK_TIMEOUT_MS
from .channels.telegram import TelegramClient, TelegramError
from .models import (
    ActionConfig,
    ActionResult,
    ActionType,
    Alarm,
    AlarmSeverity,
    AlarmStatus,
)

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

SEVERITY_ICONS = {
    AlarmSeverity.CRITICAL: "🚨",
    AlarmSeverity.WARNING: "⚠️",
    AlarmSeverity.INFO: "ℹ️",
}

ACTION_TYPE_SCHEMAS = [
    {
        "type": ActionType.TELEGRAM.value,
        "label": "Telegram Notification",
        "description": "Send a message to a Telegram chat",
        "configSchema": {
            "chatId": {"type": "string", "label": "Chat ID", "required": False,
                       "description": "Leave empty for default"},
            "message": {"type": "text", "label": "Message Template", "required": False,
                        "description": "Use {{alarm.message}}, {{alarm.severity}}, {{alarm.siteId}}, "
                                       "{{alarm.triggeredAt}} or {{alarm.details.<key>}}"},
            "includeDetails": {"type": "boolean", "label": "Include Details", "default": True},
        },
    },
    {
        "type": ActionType.WEBHOOK.value,
        "label": "Webhook Call",
        "description": "Make an HTTP request to an external service",
        "configSchema": {
            "url": {"type": "string", "label": "URL", "required": True},
            "method": {"type": "select", "label": "Method", "options": ["GET", "POST", "PUT"],
                       "default": "POST"},
            "headers": {"type": "json", "label": "Headers", "required": False},
            "body": {"type": "json", "label": "Body Template", "required": False},
            "timeout": {"type": "number", "label": "Timeout (ms)",
                        "default": WEBHOOK_TIMEOUT_MS},
        },
    },
    {
        "type": ActionType.ANNOUNCEMENT.value,
        "label": "Audio Announcement",
        "description": "Play a TTS announcement on site speakers",
        "configSchema": {
            "target": {"type": "select", "label": "Target", "options": ["horn", "cameras", "all"],
                       "default": "horn"},
            "message": {"type": "text", "label": "Message", "required": True},
            "volume": {"type": "number", "label": "Volume (%)", "default": ANNOUNCE_DEFAULT_VOLUME,
                       "min": 0, "max": 100},
        },
    },
]


def _lookup(context: Any, path: str) -> Any:
    value = context
    for key in path.strip().split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(key)
        else:
            value = getattr(value, key, None)
    return value


def _render(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def interpolate_template(template: str, context: dict[str, Any]) -> str:
    """
    Replace {{path.to.value}} tokens with values from context.

    Tokens whose path cannot be resolved are left in place verbatim.

    Examples:
        >>> interpolate_template("{{alarm.severity}}", {"alarm": {"severity": "CRITICAL"}})
        'CRITICAL'
        >>> interpolate_template("{{alarm.nonexistent}}", {"alarm": {}})
        '{{alarm.nonexistent}}'
    """
    def substitute(match: re.Match) -> str:
        value = _lookup(context, match.group(1))
        return match.group(0) if value is None else _render(value)

    return TEMPLATE_PATTERN.sub(substitute, template)


def get_action_types() -> list[dict]:
    """Supported action types and their configuration schemas."""
    return ACTION_TYPE_SCHEMAS


class ActionExecutor:
    """
    Runs a definition's configured actions against an alarm.

    Actions run sequentially in configured order. Every enabled action
    yields exactly one ActionResult; failures never propagate.
    """

    def __init__(
        self,
        telegram_client: TelegramClient | None = None,
        default_chat_id: str | None = None,
        announce_command: str | None = None,
        announce_timeout_seconds: float = ANNOUNCE_TIMEOUT_SECONDS,
        default_webhook_timeout_ms: int = WEBHOOK_TIMEOUT_MS,
    ):
        self._telegram = telegram_client
        self._default_chat_id = default_chat_id
        self._announce_command = announce_command
        self._announce_timeout = announce_timeout_seconds
        self._webhook_timeout_ms = default_webhook_timeout_ms

        self._handlers: dict[ActionType, Callable[[Alarm, ActionConfig, dict], ActionResult]] = {
            ActionType.TELEGRAM: self._execute_telegram,
            ActionType.WEBHOOK: self._execute_webhook,
            ActionType.ANNOUNCEMENT: self._execute_announcement,
        }

    @property
    def supported_types(self) -> set[ActionType]:
        return set(self._handlers)

    def execute(
        self,
        alarm: Alarm,
        actions: list[ActionConfig],
        context: dict[str, Any] | None = None,
    ) -> list[ActionResult]:
        """
        Execute actions for an alarm.

        Args:
            alarm: The triggered alarm
            actions: Configured actions, executed in order
            context: Extra template context (e.g. site), merged over alarm

        Returns:
            One ActionResult per enabled action
        """
        template_context = {"alarm": self._alarm_context(alarm), **(context or {})}
        results = []

        for action in actions:
            if not action.enabled:
                continue

            start = time.monotonic()
            try:
                handler = self._handlers.get(action.type)
                if handler is None:
                    result = self._failure(action, f"Unknown action type: {action.type}")
                else:
                    result = handler(alarm, action, template_context)
            except Exception as e:
                logger.exception(f"Action {action.name} raised")
                result = self._failure(action, str(e) or e.__class__.__name__)

            result.duration_ms = int((time.monotonic() - start) * 1000)
            results.append(result)

            logger.info(
                f"Action {action.name} ({action.type.value}): "
                f"{'success' if result.success else 'failed'}"
            )

        return results

    def test_action(self, action: ActionConfig) -> ActionResult:
        """Run one action against a synthetic alarm. Nothing is persisted."""
        test_alarm = Alarm(
            alarm_id="test-alarm",
            definition_id="test-definition",
            status=AlarmStatus.TRIGGERED,
            severity=AlarmSeverity.INFO,
            message="This is a test alarm",
            triggered_at=datetime.now(),
        )
        results = self.execute(
            test_alarm,
            [replace(action, enabled=True)],
            {"site": {"name": "Test Site"}, "isTest": True},
        )
        return results[0]

    # =========================================================================
    # Telegram
    # =========================================================================

    def _execute_telegram(self, alarm: Alarm, action: ActionConfig, context: dict) -> ActionResult:
        config = action.config
        chat_id = config.get("chatId") or self._default_chat_id

        if self._telegram is None or not self._telegram.bot_token:
            return self._failure(action, "TELEGRAM_BOT_TOKEN not configured")

        if not chat_id:
            return self._failure(action, "No chat ID specified")

        message = config.get("message") or self._default_telegram_message(
            alarm, include_details=config.get("includeDetails", True)
        )
        message = interpolate_template(message, context)

        try:
            message_id = self._telegram.send_message(str(chat_id), message)
        except TelegramError as e:
            return self._failure(action, str(e))

        suffix = f" (message {message_id})" if message_id is not None else ""
        return self._success(action, f"Sent to chat {chat_id}{suffix}")

    def _default_telegram_message(self, alarm: Alarm, include_details: bool = True) -> str:
        icon = SEVERITY_ICONS.get(alarm.severity, "🔔")
        parts = [
            f"{icon} *Alarm: {alarm.severity.value}*",
            "",
            alarm.message,
        ]
        if include_details and alarm.details:
            parts.append("")
            parts.extend(f"• {key}: {_render(value)}" for key, value in alarm.details.items())
        parts += ["", f"_Triggered at {alarm.triggered_at.strftime('%Y-%m-%d %H:%M:%S')}_"]
        return "\n".join(parts)

    # =========================================================================
    # Webhook
    # =========================================================================

    def _execute_webhook(self, alarm: Alarm, action: ActionConfig, context: dict) -> ActionResult:
        config = action.config
        url = config.get("url")
        if not url:
            return self._failure(action, "Webhook URL not configured")

        method = str(config.get("method") or "POST").upper()
        headers = dict(config.get("headers") or {})
        timeout_seconds = float(config.get("timeout") or self._webhook_timeout_ms) / 1000

        if config.get("body"):
            rendered = interpolate_template(str(config["body"]), context)
            try:
                body = json.loads(rendered)
            except ValueError as e:
                return self._failure(action, f"Invalid webhook body: {e}")
        else:
            body = {
                "alarm": {
                    "id": alarm.alarm_id,
                    "message": alarm.message,
                    "severity": alarm.severity.value,
                }
            }

        if method == "GET":
            if isinstance(body, dict) and body:
                params = {k: v if isinstance(v, str) else json.dumps(v) for k, v in body.items()}
                separator = "&" if urllib.parse.urlparse(url).query else "?"
                url = f"{url}{separator}{urllib.parse.urlencode(params)}"
            req = urllib.request.Request(url, headers=headers, method=method)
        else:
            headers.setdefault("Content-Type", "application/json")
            req = urllib.request.Request(
                url,
                data=json.dumps(body, default=str).encode(),
                headers=headers,
                method=method,
            )

        try:
            with urllib.request.urlopen(req, timeout=timeout_seconds) as response:
                response.read()
                status = response.status
        except urllib.error.HTTPError as e:
            return self._failure(action, f"HTTP {e.code}: {e.reason}")
        except (urllib.error.URLError, OSError, ValueError) as e:
            return self._failure(action, f"Webhook request failed: {e}")

        if not 200 <= status < 300:
            return self._failure(action, f"HTTP {status}")

        return self._success(action, f"HTTP {status}")

    # =========================================================================
    # Announcement
    # =========================================================================

    def _execute_announcement(self, alarm: Alarm, action: ActionConfig, context: dict) -> ActionResult:
        config = action.config
        if not self._announce_command:
            return self._failure(action, "Announcement command not configured")

        message = interpolate_template(config.get("message") or f"Alert: {alarm.message}", context)
        volume = min(100, max(0, int(config.get("volume", ANNOUNCE_DEFAULT_VOLUME))))
        target = config.get("target") or "horn"

        try:
            completed = subprocess.run(
                [self._announce_command, message, str(volume)],
                capture_output=True,
                text=True,
                timeout=self._announce_timeout,
            )
        except subprocess.TimeoutExpired:
            return self._failure(action, f"Announcement timed out after {self._announce_timeout}s")
        except OSError as e:
            return self._failure(action, f"Announcement command failed: {e}")

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()
            error = f"Announcement exited with code {completed.returncode}"
            return self._failure(action, f"{error}: {detail}" if detail else error)

        return self._success(action, f"Announced on {target} at volume {volume}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _alarm_context(self, alarm: Alarm) -> dict[str, Any]:
        data = alarm.to_dict()
        # camelCase aliases for templates
        data.update({
            "id": alarm.alarm_id,
            "alarmId": alarm.alarm_id,
            "definitionId": alarm.definition_id,
            "siteId": alarm.site_id,
            "triggeredAt": data["triggered_at"],
            "acknowledgedAt": data["acknowledged_at"],
            "acknowledgedBy": alarm.acknowledged_by,
            "resolvedAt": data["resolved_at"],
            "resolvedBy": alarm.resolved_by,
        })
        return data

    def _success(self, action: ActionConfig, message: str) -> ActionResult:
        return ActionResult(
            action_name=action.name,
            action_type=action.type,
            success=True,
            message=message,
        )

    def _failure(self, action: ActionConfig, error: str) -> ActionResult:
        return ActionResult(
            action_name=action.name,
            action_type=action.type,
            success=False,
            error=error,
        )
