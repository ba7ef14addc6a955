"""Outbound email over SMTP.

When no SMTP host is configured the message is logged instead of sent, so
local runs and tests exercise the full reminder path without a mail server.
"""
from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Mapping, Optional

from app.config import EMAIL_SETTINGS
from app.services.study_schedules import UpcomingSession
from app.utils import get_logger

logger = get_logger(__name__)


def build_reminder_text(display_name: str, schedule: UpcomingSession) -> tuple[str, str]:
    """Subject and plain-text body of a study reminder."""
    when = schedule.scheduled_date.strftime("%Y-%m-%d %H:%M UTC")
    target = schedule.course_title
    if schedule.lesson_title:
        target = f"{schedule.course_title} - {schedule.lesson_title}"
    subject = f"Reminder: your study session starts in {schedule.reminder_minutes} minutes"
    body = (
        f"Hi {display_name},\n\n"
        f"Your study session for {target} starts at {when}.\n\n"
        "Good luck and enjoy learning!\n"
    )
    return subject, body


class EmailService:
    def __init__(self, settings: Optional[Mapping[str, Any]] = None) -> None:
        self.settings = dict(settings if settings is not None else EMAIL_SETTINGS)

    @property
    def configured(self) -> bool:
        return bool(self.settings.get("smtp_host"))

    def send_email(self, to_address: str, subject: str, body: str) -> bool:
        """Send one plain-text email. SMTP errors propagate to the caller."""
        if not self.configured:
            logger.info("SMTP not configured; email logged only", to=to_address, subject=subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.settings.get('from_name')} <{self.settings.get('from_address')}>"
        msg["To"] = to_address
        msg.attach(MIMEText(body, "plain"))

        host = str(self.settings["smtp_host"])
        port = int(self.settings.get("smtp_port", 587))
        timeout = float(self.settings.get("timeout_seconds", 10))
        with smtplib.SMTP(host, port, timeout=timeout) as server:
            if self.settings.get("use_tls", True):
                server.starttls()
            user = self.settings.get("smtp_user")
            password = self.settings.get("smtp_password")
            if user and password:
                server.login(str(user), str(password))
            server.sendmail(str(self.settings.get("from_address")), [to_address], msg.as_string())
        logger.info("Email sent", to=to_address, subject=subject)
        return True

    def send_reminder_email(self, address: str, display_name: str, schedule: UpcomingSession) -> bool:
        subject, body = build_reminder_text(display_name, schedule)
        return self.send_email(address, subject, body)


__all__ = ["EmailService", "build_reminder_text"]
