from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from app.domain.exceptions import UpstreamUnavailableError, ValidationError
from app.workers import scheduled_tasks
from app.workers.scheduled_tasks import (
    MISSED_TASKS,
    PLAN_REFRESH,
    TASK_REMINDERS,
    TOKEN_SWEEP,
    plan_refresh_task,
    register_all_tasks,
    schedule_default_jobs,
    token_sweep_task,
)
from app.workers.unified_scheduler import ScheduleType, UnifiedScheduler

NOW = datetime(2025, 6, 2, 1, 0, tzinfo=timezone.utc)


@pytest.fixture()
def container():
    mock = MagicMock()
    mock.config = SimpleNamespace(
        plan_max_age_hours=24,
        reminder_lead_minutes=15,
        missed_task_interval_minutes=60,
    )
    mock.plant_repo.list_needing_refresh.return_value = []
    mock.reminder_service.send_task_reminders.return_value = {"sent": 2, "skipped": 0, "errors": 0}
    mock.reminder_service.send_missed_task_warnings.return_value = {"sent": 0, "skipped": 1, "errors": 0}
    mock.token_service.purge_expired.return_value = 3
    return mock


class TestPlanRefresh:
    def test_counts_each_outcome(self, container, monkeypatch):
        monkeypatch.setattr(scheduled_tasks, "utc_now", lambda: NOW)
        container.plant_repo.list_needing_refresh.return_value = ["ok", "no_coords", "outage", "broken"]
        errors = {
            "no_coords": ValidationError("no coordinates"),
            "outage": UpstreamUnavailableError("weather down"),
            "broken": RuntimeError("bad row"),
        }

        def _refresh(plant_id, notify=False):
            assert notify
            if plant_id in errors:
                raise errors[plant_id]

        container.care_plan_service.refresh_plan.side_effect = _refresh

        result = plan_refresh_task(container)

        assert result == {"processed": 1, "skipped": 1, "errors": 2, "failed": ["outage", "broken"]}
        container.plant_repo.list_needing_refresh.assert_called_once_with(NOW - timedelta(hours=24))

    def test_nothing_stale(self, container):
        assert plan_refresh_task(container) == {"processed": 0, "skipped": 0, "errors": 0, "failed": []}
        container.care_plan_service.refresh_plan.assert_not_called()


def test_token_sweep(container):
    assert token_sweep_task(container) == {"purged": 3}


def test_registered_tasks_run_against_container(container):
    scheduler = UnifiedScheduler()
    register_all_tasks(scheduler, container)

    assert scheduler.task_names == sorted([PLAN_REFRESH, TASK_REMINDERS, MISSED_TASKS, TOKEN_SWEEP])
    assert scheduler.run_now(TASK_REMINDERS).result == {"sent": 2, "skipped": 0, "errors": 0}
    assert scheduler.run_now(MISSED_TASKS).result["skipped"] == 1
    assert scheduler.run_now(TOKEN_SWEEP).result == {"purged": 3}


def test_task_exceptions_reach_scheduler_history(container):
    container.reminder_service.send_task_reminders.side_effect = OSError("disk")
    scheduler = UnifiedScheduler()
    register_all_tasks(scheduler, container)

    result = scheduler.run_now(TASK_REMINDERS)

    assert not result.success
    assert result.error == "disk"


def test_default_jobs(container):
    scheduler = UnifiedScheduler(clock=lambda: NOW)
    register_all_tasks(scheduler, container)

    schedule_default_jobs(scheduler, container.config)

    jobs = {job.job_id: job for job in scheduler.get_jobs()}
    assert jobs[TASK_REMINDERS].interval_seconds == 15 * 60
    assert jobs[TASK_REMINDERS].next_run == NOW
    assert jobs[MISSED_TASKS].interval_seconds == 60 * 60
    assert jobs[MISSED_TASKS].next_run == NOW + timedelta(hours=1)
    assert jobs[PLAN_REFRESH].interval_seconds == 3600
    sweep = jobs[f"{TOKEN_SWEEP}_daily"]
    assert sweep.schedule_type is ScheduleType.DAILY
    assert sweep.time_of_day == "03:00"
