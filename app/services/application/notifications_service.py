"""
Notification Dispatcher
=======================

Fire-and-forget delivery of care-plan events to users.

Events are plain dicts with at least ``type`` (a
:class:`NotificationEventType` value). Delivery goes to email when the
event carries a ``recipient`` and SMTP is configured; every event is
logged either way. :meth:`NotificationDispatcher.notify` never raises:
the outcome comes back as a :class:`DispatchResult` for the caller to log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from app.enums.care import NotificationEventType
from app.services.utilities.email_service import render_task_email

if TYPE_CHECKING:
    from app.services.utilities.email_service import EmailService

logger = logging.getLogger(__name__)

_TITLES = {
    NotificationEventType.TASK_REMINDER: "Plant care reminder: {plant_name}",
    NotificationEventType.TASK_MISSED: "Missed plant care tasks: {plant_name}",
    NotificationEventType.TASK_COMPLETED: "Task completed: {plant_name}",
    NotificationEventType.PLAN_REFRESHED: "New care plan ready: {plant_name}",
}
_INTROS = {
    NotificationEventType.TASK_REMINDER: "These tasks are due soon. Tap a link once the task is done.",
    NotificationEventType.TASK_MISSED: "These scheduled tasks have not been marked as done yet.",
    NotificationEventType.TASK_COMPLETED: "The following task was marked as done.",
    NotificationEventType.PLAN_REFRESHED: "Your 7-day care plan has been updated.",
}


@dataclass
class DispatchResult:
    delivered: bool
    channel: str = "log"
    error: str | None = None


class NotificationDispatcher:
    """Implements the ``Notifier`` protocol on top of email delivery."""

    def __init__(self, email_service: "EmailService | None" = None) -> None:
        self._email = email_service

    def notify(self, user_id: str, event: dict[str, Any]) -> DispatchResult:
        try:
            return self._dispatch(user_id, event)
        except Exception as exc:
            logger.error("Notification %s for user %s failed: %s", event.get("type"), user_id, exc, exc_info=True)
            return DispatchResult(delivered=False, error=str(exc))

    def _dispatch(self, user_id: str, event: dict[str, Any]) -> DispatchResult:
        event_type = NotificationEventType(event["type"])
        logger.info(
            "Notification %s for user %s (plant %s, %d task(s))",
            event_type,
            user_id,
            event.get("plant_id"),
            len(event.get("tasks") or []),
        )

        recipient = event.get("recipient")
        if not recipient or self._email is None or not self._email.is_configured:
            return DispatchResult(delivered=True, channel="log")

        message = render_task_email(
            recipient,
            _TITLES[event_type].format(plant_name=event.get("plant_name") or "your plant"),
            _INTROS[event_type],
            list(event.get("tasks") or []),
        )
        if self._email.send(message):
            return DispatchResult(delivered=True, channel="email")
        return DispatchResult(delivered=False, channel="email", error="email delivery failed")
