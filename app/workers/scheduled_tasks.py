"""
Scheduled Tasks: background task definitions for the UnifiedScheduler.

Task names are namespaced:
- plan.*: care plan regeneration
- notify.*: task reminders and missed-task warnings
- maintenance.*: completion token cleanup

Usage:
    from app.workers.scheduled_tasks import register_all_tasks, schedule_default_jobs

    register_all_tasks(container.scheduler, container)
    schedule_default_jobs(container.scheduler, container.config)
    container.scheduler.start()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any

from app.domain.exceptions import CarePlanError, ValidationError
from app.utils.time import utc_now

if TYPE_CHECKING:
    from app.config import AppConfig
    from app.services.container import ServiceContainer
    from app.workers.unified_scheduler import UnifiedScheduler

logger = logging.getLogger(__name__)

TASK_SOFT_ERRORS = (
    CarePlanError,
    RuntimeError,
    ValueError,
    TypeError,
    KeyError,
    OSError,
)

PLAN_REFRESH = "plan.refresh_stale"
TASK_REMINDERS = "notify.task_reminders"
MISSED_TASKS = "notify.missed_tasks"
TOKEN_SWEEP = "maintenance.purge_completion_tokens"


# ==================== Plan Namespace Tasks ====================


def plan_refresh_task(container: "ServiceContainer") -> dict[str, Any]:
    """
    Regenerate care plans older than ``plan_max_age_hours``.

    Each plant is refreshed on its own; a forecast outage or bad record
    for one plant is counted and the batch continues.
    """
    cutoff = utc_now() - timedelta(hours=container.config.plan_max_age_hours)
    results: dict[str, Any] = {"processed": 0, "skipped": 0, "errors": 0, "failed": []}

    for plant_id in container.plant_repo.list_needing_refresh(cutoff):
        try:
            container.care_plan_service.refresh_plan(plant_id, notify=True)
            results["processed"] += 1
        except ValidationError as exc:
            # no coordinates yet; nothing to forecast
            results["skipped"] += 1
            logger.debug("Skipping refresh for plant %s: %s", plant_id, exc)
        except TASK_SOFT_ERRORS as exc:
            results["errors"] += 1
            results["failed"].append(plant_id)
            logger.warning("Scheduled refresh for plant %s failed: %s", plant_id, exc)

    if results["processed"] or results["errors"]:
        logger.info("Plan refresh: %d refreshed, %d failed", results["processed"], results["errors"])
    return results


# ==================== Notify Namespace Tasks ====================


def task_reminder_task(container: "ServiceContainer") -> dict[str, Any]:
    """Send reminders for actions starting within the lead time."""
    return container.reminder_service.send_task_reminders()


def missed_task_warning_task(container: "ServiceContainer") -> dict[str, Any]:
    """Warn about actions that passed their grace period uncompleted."""
    return container.reminder_service.send_missed_task_warnings()


# ==================== Maintenance Namespace Tasks ====================


def token_sweep_task(container: "ServiceContainer") -> dict[str, Any]:
    purged = container.token_service.purge_expired()
    if purged:
        logger.info("Purged %d expired completion token(s)", purged)
    return {"purged": purged}


# ==================== Registration ====================


def register_all_tasks(
    scheduler: "UnifiedScheduler",
    container: "ServiceContainer",
) -> None:
    """
    Register every task with the scheduler, bound to *container*.

    Registration only makes the tasks runnable by name; see
    :func:`schedule_default_jobs` for the recurring schedule.
    """

    def bind(task_fn):
        @wraps(task_fn)
        def bound_task():
            try:
                return task_fn(container)
            except Exception as exc:
                logger.exception("Scheduled task %s raised: %s", task_fn.__name__, exc)
                # re-raise so the scheduler records the failure in its history
                raise

        return bound_task

    scheduler.register_task(PLAN_REFRESH, bind(plan_refresh_task))
    scheduler.register_task(TASK_REMINDERS, bind(task_reminder_task))
    scheduler.register_task(MISSED_TASKS, bind(missed_task_warning_task))
    scheduler.register_task(TOKEN_SWEEP, bind(token_sweep_task))
    logger.info("Registered %d scheduled tasks", len(scheduler.task_names))


def schedule_default_jobs(scheduler: "UnifiedScheduler", config: "AppConfig") -> None:
    """
    Set up the recurring jobs.

    The reminder and missed-task jobs run at the same period as their
    look-ahead / look-back windows, so consecutive windows tile the
    timeline and each action is reported at most once per kind.
    """
    scheduler.schedule_interval(
        TASK_REMINDERS,
        config.reminder_lead_minutes * 60,
        start_immediately=True,
    )
    scheduler.schedule_interval(
        MISSED_TASKS,
        config.missed_task_interval_minutes * 60,
    )
    scheduler.schedule_interval(PLAN_REFRESH, 3600, start_immediately=True)
    scheduler.schedule_daily(TOKEN_SWEEP, "03:00")
    logger.info("Default jobs scheduled: %s", ", ".join(job.job_id for job in scheduler.get_jobs()))
