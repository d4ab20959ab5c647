"""
Telegram Client
===============
Minimal Telegram Bot API client used by the chat-message action.
"""

import json
import urllib.error
import urllib.parse
import urllib.request


class TelegramError(Exception):
    """Raised when the Bot API rejects or fails a request."""


class TelegramClient:
    """
    Sends messages through the Telegram Bot API.

    Every request carries its own timeout so a stalled API cannot block
    the scheduler tick.
    """

    API_BASE = "https://api.telegram.org/bot"

    def __init__(self, bot_token: str, timeout_seconds: float = 10.0):
        self.bot_token = bot_token
        self.timeout_seconds = timeout_seconds

    def send_message(self, chat_id: str, text: str, parse_mode: str = "Markdown") -> int | None:
        """
        Send a message to a chat.

        Returns:
            The Telegram message id

        Raises:
            TelegramError: on HTTP, transport or API errors
        """
        data = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        }
        result = self._call("sendMessage", data)
        return result.get("message_id")

    def _call(self, method: str, data: dict | None = None) -> dict:
        url = f"{self.API_BASE}{self.bot_token}/{method}"
        encoded = urllib.parse.urlencode(data).encode() if data else None
        req = urllib.request.Request(url, data=encoded)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as response:
                payload = json.loads(response.read().decode())
        except urllib.error.HTTPError as e:
            raise TelegramError(f"Telegram API returned HTTP {e.code}") from e
        except (OSError, ValueError) as e:
            raise TelegramError(f"Telegram request failed: {e}") from e

        if not payload.get("ok"):
            raise TelegramError(payload.get("description") or "Telegram API error")

        return payload.get("result") or {}
