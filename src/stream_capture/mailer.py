"""Email notifications for Stream Capture."""

import logging
import smtplib
from email.message import EmailMessage
from typing import List

from .config import config

logger = logging.getLogger(__name__)

class Mailer:
    """Sends schedule summaries and error alerts by email."""

    def __init__(self, host: str = None, port: int = None, user: str = None,
                 password: str = None, mail_from: str = None, mail_to: str = None):
        self.host = host if host is not None else config.SMTP_HOST
        self.port = port if port is not None else config.SMTP_PORT
        self.user = user if user is not None else config.SMTP_USER
        self.password = password if password is not None else config.SMTP_PASSWORD
        self.mail_from = mail_from if mail_from is not None else config.MAIL_FROM
        self.mail_to = mail_to if mail_to is not None else config.MAIL_TO

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.mail_to)

    @staticmethod
    def format_show(record) -> str:
        star = "+ " if record.starred else ""
        return f"{star}{record.description}  {record.start_dt:%a %b %d %H:%M} - {record.end_dt:%H:%M}  Channels: {record.channel_string()}"

    def build_schedule_text(self, queue: List, too_many: List) -> str:
        """Plain-text body listing the queue and shows rejected for capacity."""
        text = ""
        if queue:
            text += "Current Schedule:\n"
            text += "".join(f"  {self.format_show(r)}\n" for r in queue)
        if too_many:
            if text:
                text += "\n"
            text += "Too many concurrent captures, skipping:\n"
            text += "".join(f"  {self.format_show(r)}\n" for r in too_many)
        return text

    def send_schedule_mail(self, queue: List, too_many: List) -> bool:
        body = self.build_schedule_text(queue, too_many)
        if not body:
            return False
        return self.send_mail(f"Capture schedule: {len(queue)} queued, {len(too_many)} skipped", body)

    def send_error_mail(self, subject: str, body: str) -> bool:
        return self.send_mail(f"ERROR: {subject}", body)

    def send_mail(self, subject: str, body: str) -> bool:
        """Send a message. Delivery problems are logged, never raised."""
        if not self.is_configured:
            logger.info(f"Email not configured, not sending '{subject}'")
            logger.debug(body)
            return False

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.mail_from or self.user
        message["To"] = self.mail_to
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
                smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
            logger.info(f"Sent mail: {subject}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send mail '{subject}': {e}")
            return False
