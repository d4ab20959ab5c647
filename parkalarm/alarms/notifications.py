"""
Notification Dispatcher
=======================
Creates and delivers one notification per channel for each new alarm.

Features:
- IN_APP notifications marked sent immediately (surfaced by UI polling)
- EMAIL/SMS delivery through pluggable transports
- Explicit retry sweep for failed deliveries
- Unread / read-state queries for the notification bell
"""

import logging
import uuid
from datetime import datetime

from .channels.base import NotificationTransport
from .models import (
    Alarm,
    AlarmNotFoundError,
    AlarmNotification,
    NotificationChannel,
    NotificationStatus,
)
from .store import AlarmStore

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Sole writer of AlarmNotification rows.

    EMAIL and SMS need a recipient. Without a registered transport for the
    channel the notification is optimistically marked sent.
    """

    def __init__(
        self,
        store: AlarmStore,
        default_recipients: dict[NotificationChannel, str] | None = None,
    ):
        self._store = store
        self._default_recipients = dict(default_recipients or {})
        self._transports: dict[NotificationChannel, NotificationTransport] = {}

    def register_transport(self, channel: NotificationChannel, transport: NotificationTransport):
        """Register the delivery back-end for EMAIL or SMS."""
        if channel == NotificationChannel.IN_APP:
            raise ValueError("IN_APP notifications have no transport")
        self._transports[channel] = transport
        logger.info(f"Registered notification transport: {channel.value} -> {transport.name}")

    # =========================================================================
    # Dispatch
    # =========================================================================

    def dispatch(
        self,
        alarm: Alarm,
        channels: list[NotificationChannel],
        user_id: str | None = None,
    ) -> list[AlarmNotification]:
        """Create one notification per channel, in channel order, and deliver each."""
        notifications = []

        for channel in channels:
            notification = AlarmNotification(
                notification_id=str(uuid.uuid4()),
                alarm_id=alarm.alarm_id,
                channel=channel,
                user_id=user_id,
                recipient=self._default_recipients.get(channel),
            )
            self._store.add_notification(notification)
            self._deliver(notification, alarm)
            notifications.append(notification)

        return notifications

    def retry_failed_notifications(self) -> int:
        """
        Re-run delivery on every FAILED notification in place.

        Returns:
            Number of notifications retried
        """
        failed = self._store.list_notifications(status=NotificationStatus.FAILED)
        retried = 0

        for notification in failed:
            alarm = self._store.get_alarm(notification.alarm_id)
            if alarm is None:
                continue

            if not notification.recipient:
                notification.recipient = self._default_recipients.get(notification.channel)

            self._deliver(notification, alarm)
            retried += 1

        if retried:
            logger.info(f"Retried {retried} failed notifications")
        return retried

    def _deliver(self, notification: AlarmNotification, alarm: Alarm):
        if notification.channel == NotificationChannel.IN_APP:
            self._mark_sent(notification)
            logger.debug(f"In-app notification created for alarm {alarm.alarm_id}")
            return

        if not notification.recipient:
            logger.warning(
                f"{notification.channel.value} notification {notification.notification_id} has no recipient"
            )
            self._mark_failed(notification, "No recipient specified")
            return

        transport = self._transports.get(notification.channel)
        if transport is None:
            logger.info(
                f"{notification.channel.value} notification queued for {notification.recipient}"
            )
            self._mark_sent(notification)
            return

        subject = f"[{alarm.severity.value}] {alarm.message}"
        body = self._format_body(alarm)

        try:
            delivered = transport.send(notification.recipient, subject, body)
        except Exception as e:
            logger.error(f"Transport {transport.name} raised for {notification.notification_id}: {e}")
            self._mark_failed(notification, str(e))
            return

        if delivered:
            self._mark_sent(notification)
        else:
            self._mark_failed(notification, transport.last_error or "Delivery failed")

    def _format_body(self, alarm: Alarm) -> str:
        lines = [
            f"Severity: {alarm.severity.value}",
            f"Status: {alarm.status.value}",
        ]
        if alarm.site_id:
            lines.append(f"Site: {alarm.site_id}")
        lines += [
            "",
            alarm.message,
            "",
            f"Triggered at {alarm.triggered_at.strftime('%Y-%m-%d %H:%M:%S')}",
            f"Alarm ID: {alarm.alarm_id}",
        ]
        return "\n".join(lines)

    def _mark_sent(self, notification: AlarmNotification):
        notification.status = NotificationStatus.SENT
        notification.sent_at = datetime.now()
        notification.metadata = {}
        self._store.update_notification(notification)

    def _mark_failed(self, notification: AlarmNotification, error: str):
        notification.status = NotificationStatus.FAILED
        notification.metadata = {"error": error}
        self._store.update_notification(notification)

    # =========================================================================
    # Read side
    # =========================================================================

    def get_unread_notifications(self, user_id: str | None = None) -> list[AlarmNotification]:
        """Sent, unread IN_APP notifications for a user (or broadcasts)."""
        return self._store.list_unread_notifications(user_id)

    def get_unread_count(self, user_id: str | None = None) -> int:
        return self._store.count_unread_notifications(user_id)

    def mark_notification_read(self, notification_id: str) -> AlarmNotification:
        notification = self._store.get_notification(notification_id)
        if notification is None:
            raise AlarmNotFoundError(f"Notification {notification_id} not found")

        notification.status = NotificationStatus.READ
        notification.read_at = datetime.now()
        return self._store.update_notification(notification)

    def mark_all_notifications_read(self, user_id: str | None = None) -> int:
        return self._store.mark_all_read(datetime.now(), user_id)

    def get_notifications_for_alarm(self, alarm_id: str) -> list[AlarmNotification]:
        return self._store.list_notifications(alarm_id=alarm_id)
