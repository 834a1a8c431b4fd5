"""
Reminder Service
================

Finds scheduled actions that are about to start (reminders) or that
passed without being done (missed-task warnings), mints one completion
link per action and hands a single event per plant to the notifier.

Each plant is processed independently: a failure is logged and counted
and the batch continues.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from app.domain.care_plan import Action, PlantRecord
from app.domain.exceptions import CarePlanError
from app.enums.care import NotificationEventType
from app.utils.time import local_datetime, utc_now

if TYPE_CHECKING:
    from app.services.application.completion_token_service import CompletionTokenService
    from app.services.protocols import Notifier
    from infrastructure.database.repositories.plants import PlantRepository

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"

_RECORD_ERRORS = (CarePlanError, KeyError, TypeError, ValueError, OSError)


class ReminderService:
    """Reminder and missed-task notification dispatch."""

    def __init__(
        self,
        plants: "PlantRepository",
        tokens: "CompletionTokenService",
        notifier: "Notifier",
        *,
        lead_time: timedelta = timedelta(minutes=15),
        missed_grace: timedelta = timedelta(hours=1),
        missed_interval: timedelta = timedelta(hours=1),
        default_timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._plants = plants
        self._tokens = tokens
        self._notifier = notifier
        self._lead_time = lead_time
        self._missed_grace = missed_grace
        self._missed_interval = missed_interval
        self._default_timezone = default_timezone
        self._clock = clock

    def send_task_reminders(self) -> dict[str, int]:
        """Notify about uncompleted actions scheduled in ``(now, now + lead_time]``."""
        now = self._clock()
        return self._run(NotificationEventType.TASK_REMINDER, now, now + self._lead_time)

    def send_missed_task_warnings(self) -> dict[str, int]:
        """
        Notify about uncompleted actions whose time passed more than the
        grace period ago, within one check interval, so each is reported once.
        """
        cutoff = self._clock() - self._missed_grace
        return self._run(NotificationEventType.TASK_MISSED, cutoff - self._missed_interval, cutoff)

    # ------------------------------------------------------------------

    def _run(self, event_type: NotificationEventType, start: datetime, end: datetime) -> dict[str, int]:
        results = {"sent": 0, "skipped": 0, "errors": 0}
        for plant in self._plants.list_active():
            if not self._wants_email(plant):
                results["skipped"] += 1
                continue
            try:
                due = self.due_actions(plant, start, end)
                if not due:
                    continue
                if self._send(plant, event_type, due):
                    results["sent"] += 1
                else:
                    results["errors"] += 1
            except _RECORD_ERRORS as exc:
                results["errors"] += 1
                logger.error("%s for plant %s failed: %s", event_type, plant.id, exc)

        logger.info(
            "%s run: %d sent, %d skipped, %d errors",
            event_type,
            results["sent"],
            results["skipped"],
            results["errors"],
        )
        return results

    @staticmethod
    def _wants_email(plant: PlantRecord) -> bool:
        prefs = plant.notifications
        return bool(prefs.enabled and prefs.email)

    def due_actions(self, plant: PlantRecord, start: datetime, end: datetime) -> list[tuple[int, Action, datetime]]:
        """Uncompleted actions with ``start < scheduled time <= end``, in time order."""
        if plant.care_plan is None:
            return []
        tz_name = plant.timezone or self._default_timezone
        due = []
        for day_index, day, action in plant.care_plan.iter_actions():
            if action.completed:
                continue
            scheduled = local_datetime(day.date, action.time, tz_name)
            if start < scheduled <= end:
                due.append((day_index, action, scheduled))
        due.sort(key=lambda item: item[2])
        return due

    def _send(
        self,
        plant: PlantRecord,
        event_type: NotificationEventType,
        due: list[tuple[int, Action, datetime]],
    ) -> bool:
        tasks: list[dict[str, Any]] = []
        for day_index, action, scheduled in due:
            raw_token = self._tokens.issue(plant.id, day_index, action.id, plant=plant)
            tasks.append(
                {
                    "day_index": day_index,
                    "action_id": action.id,
                    "type": str(action.type),
                    "time": action.time,
                    "scheduled_at": scheduled.isoformat(),
                    "description": action.description,
                    "completion_url": self._tokens.build_completion_url(raw_token),
                }
            )

        event = {
            "type": str(event_type),
            "plant_id": plant.id,
            "plant_name": plant.name,
            "recipient": plant.notifications.email_address,
            "tasks": tasks,
        }
        result = self._notifier.notify(plant.user_id, event)
        delivered = getattr(result, "delivered", True)
        if not delivered:
            logger.warning("%s for plant %s not delivered: %s", event_type, plant.id, getattr(result, "error", ""))
        return bool(delivered)
