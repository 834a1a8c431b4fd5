"""
Email Service
=============

SMTP delivery for care-plan notifications (task reminders, missed tasks,
completion confirmations). Plain text plus an HTML alternative.

Sending never raises: every SMTP problem is logged and reported as
``False`` so notification failures cannot break the triggering operation.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

logger = logging.getLogger(__name__)


@dataclass
class EmailConfig:
    """SMTP connection settings."""

    smtp_host: str
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    from_address: str | None = None

    @property
    def sender(self) -> str:
        return self.from_address or self.smtp_username or "careplan@localhost"


@dataclass
class EmailMessage:
    to_address: str
    subject: str
    body_text: str
    body_html: str | None = None

    def to_mime(self, from_address: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = self.subject
        msg["From"] = from_address
        msg["To"] = self.to_address
        msg.attach(MIMEText(self.body_text, "plain", "utf-8"))
        if self.body_html:
            msg.attach(MIMEText(self.body_html, "html", "utf-8"))
        return msg


class EmailService:
    """Thin SMTP sender."""

    def __init__(self, config: EmailConfig | None = None):
        self._config = config

    @property
    def is_configured(self) -> bool:
        return bool(self._config and self._config.smtp_host)

    def send(self, message: EmailMessage) -> bool:
        """Send *message*. Returns ``True`` on success."""
        cfg = self._config
        if not cfg or not cfg.smtp_host:
            logger.warning("SMTP host not configured, email to %s not sent", message.to_address)
            return False

        try:
            mime_msg = message.to_mime(cfg.sender)
            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=30) as server:
                if cfg.smtp_use_tls:
                    server.starttls(context=ssl.create_default_context())
                if cfg.smtp_username and cfg.smtp_password:
                    server.login(cfg.smtp_username, cfg.smtp_password)
                server.sendmail(cfg.sender, message.to_address, mime_msg.as_string())
            logger.info("Email sent to %s: %s", message.to_address, message.subject)
            return True
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("SMTP authentication failed: %s", exc)
            return False
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP error sending email to %s: %s", message.to_address, exc)
            return False


def render_task_email(
    to_address: str,
    title: str,
    intro: str,
    tasks: list[dict],
) -> EmailMessage:
    """
    Build a task list email. Each task dict carries ``time``,
    ``description`` and optionally ``completion_url``.
    """
    text_lines = [title, "=" * len(title), "", intro, ""]
    html_items = []
    for task in tasks:
        line = f"- {task.get('time', '')} {task.get('description', '')}".rstrip()
        url = task.get("completion_url")
        if url:
            line += f"\n  Mark as done: {url}"
        text_lines.append(line)

        item = f"<strong>{escape(task.get('time', ''))}</strong> {escape(task.get('description', ''))}"
        if url:
            item += f' <a href="{escape(url, quote=True)}">Mark as done</a>'
        html_items.append(f"<li>{item}</li>")

    text_lines += ["", "This is an automated message from your plant care plan."]
    html = (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif\">"
        f"<h2 style=\"color: #2e7d32\">{escape(title)}</h2>"
        f"<p>{escape(intro)}</p>"
        f"<ul>{''.join(html_items)}</ul>"
        "<p style=\"font-size: 12px; color: #666\">This is an automated message from your plant care plan.</p>"
        "</body></html>"
    )
    return EmailMessage(to_address=to_address, subject=title, body_text="\n".join(text_lines), body_html=html)
