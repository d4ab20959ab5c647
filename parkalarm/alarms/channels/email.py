"""
Email Notification Transport
============================
SMTP delivery for EMAIL alarm notifications.
"""

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage

from .base import NotificationTransport, TransportConfig

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig(TransportConfig):
    """SMTP server and sender settings."""
    smtp_server: str = ""
    smtp_port: int = 587
    use_tls: bool = True
    use_ssl: bool = False

    username: str = ""
    password: str = ""

    from_address: str = ""
    from_name: str = "Parking Alarms"
    subject_prefix: str = "[ALARM]"


class EmailTransport(NotificationTransport):
    """Plain-text email, one message per recipient."""

    def __init__(self, config: EmailConfig):
        super().__init__(config)
        self.email_config = config

    def send(self, recipient: str, subject: str, body: str) -> bool:
        cfg = self.email_config
        if not self.is_enabled:
            self._fail("Email transport disabled")
            return False
        if not cfg.smtp_server:
            self._fail("SMTP server not configured")
            return False
        if not self._within_limits():
            return False

        msg = EmailMessage()
        msg["Subject"] = f"{cfg.subject_prefix} {subject}"
        msg["From"] = f"{cfg.from_name} <{cfg.from_address}>"
        msg["To"] = recipient
        msg.set_content(self._clip(body))

        try:
            server = self._connect()
            try:
                server.sendmail(cfg.from_address, [recipient], msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            self._fail(f"Failed to send email to {recipient}: {e}")
            return False

        self._delivered_ok()
        logger.info(f"Email sent to {recipient}")
        return True

    def test(self) -> bool:
        if not self.email_config.smtp_server:
            logger.error("SMTP server not configured")
            return False

        try:
            self._connect().quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP connection to {self.email_config.smtp_server} failed: {e}")
            return False
        return True

    def _connect(self) -> smtplib.SMTP:
        cfg = self.email_config
        context = ssl.create_default_context()

        if cfg.use_ssl:
            server = smtplib.SMTP_SSL(
                cfg.smtp_server, cfg.smtp_port, context=context, timeout=cfg.timeout_seconds
            )
        else:
            server = smtplib.SMTP(cfg.smtp_server, cfg.smtp_port, timeout=cfg.timeout_seconds)
            if cfg.use_tls:
                server.starttls(context=context)

        if cfg.username and cfg.password:
            server.login(cfg.username, cfg.password)
        return server
