"""
Notification Transports
=======================
Delivery back-ends for alarm notifications and actions.

Supported:
- Email: SMTP delivery for EMAIL notifications
- SMS: Twilio delivery for SMS notifications
- Telegram: Bot API client for chat-message actions
"""

from .base import NotificationTransport, TransportConfig, TransportStatus
from .email import EmailConfig, EmailTransport
from .sms import SMSConfig, SMSTransport
from .telegram import TelegramClient, TelegramError

__all__ = [
    # Base
    "NotificationTransport",
    "TransportConfig",
    "TransportStatus",
    # Email
    "EmailTransport",
    "EmailConfig",
    # SMS
    "SMSTransport",
    "SMSConfig",
    # Telegram
    "TelegramClient",
    "TelegramError",
]
