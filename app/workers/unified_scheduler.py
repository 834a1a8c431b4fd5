"""
Background job scheduler for the care plan jobs.

One loop thread pops due jobs off a heap and hands them to a bounded
worker pool. Interval jobs advance from their scheduled time (fixed
rate), so a slow run does not push every later run back.

Heap entries are ``(run_at_ts, seq, job_id)``. Entries are never removed
in place; an entry whose job was removed, disabled or rescheduled is
skipped when popped.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from app.utils.time import parse_clock_time, utc_now

logger = logging.getLogger(__name__)


class ScheduleType(Enum):
    INTERVAL = "interval"
    DAILY = "daily"


@dataclass
class JobResult:
    job_id: str
    success: bool
    started_at: datetime
    completed_at: datetime
    result: Any = None
    error: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


@dataclass
class ScheduledJob:
    job_id: str
    task_name: str
    schedule_type: ScheduleType
    enabled: bool = True
    interval_seconds: int | None = None
    time_of_day: str | None = None  # "HH:MM" UTC for DAILY
    kwargs: dict[str, Any] = field(default_factory=dict)

    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    failure_count: int = 0
    last_error: str | None = None

    @property
    def namespace(self) -> str:
        return self.task_name.split(".")[0] if "." in self.task_name else "default"

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "task_name": self.task_name,
            "schedule_type": self.schedule_type.value,
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "time_of_day": self.time_of_day,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "last_error": self.last_error,
        }


class UnifiedScheduler:
    """Runs registered task functions on interval or daily schedules."""

    def __init__(
        self,
        check_interval_seconds: float = 1.0,
        max_history: int = 500,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._check_interval = float(check_interval_seconds)
        self._max_history = int(max_history)
        self._max_workers = int(max_workers)
        self._clock = clock

        self._tasks: dict[str, Callable[..., Any]] = {}
        self._jobs: dict[str, ScheduledJob] = {}
        self._job_heap: list[tuple[float, int, str]] = []
        self._heap_seq = 0
        self._history: list[JobResult] = []

        self._running = False
        self._thread: threading.Thread | None = None
        self._job_lock = threading.RLock()
        self._executor: ThreadPoolExecutor | None = None

    # ==================== Registration ====================

    def register_task(self, name: str, func: Callable[..., Any]) -> None:
        self._tasks[name] = func
        logger.debug("Registered task: %s", name)

    @property
    def task_names(self) -> list[str]:
        return sorted(self._tasks)

    def schedule_interval(
        self,
        task_name: str,
        interval_seconds: int,
        *,
        job_id: str | None = None,
        start_immediately: bool = False,
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledJob:
        now = self._clock()
        job = ScheduledJob(
            job_id=job_id or task_name,
            task_name=task_name,
            schedule_type=ScheduleType.INTERVAL,
            interval_seconds=int(interval_seconds),
            kwargs=kwargs or {},
            next_run=now if start_immediately else now + timedelta(seconds=int(interval_seconds)),
        )
        self._add_job(job)
        logger.info("Scheduled interval job: %s (every %ss)", job.job_id, interval_seconds)
        return job

    def schedule_daily(
        self,
        task_name: str,
        time_of_day: str,
        *,
        job_id: str | None = None,
        kwargs: dict[str, Any] | None = None,
    ) -> ScheduledJob:
        job = ScheduledJob(
            job_id=job_id or f"{task_name}_daily",
            task_name=task_name,
            schedule_type=ScheduleType.DAILY,
            time_of_day=time_of_day,
            kwargs=kwargs or {},
            next_run=self._next_daily(time_of_day),
        )
        self._add_job(job)
        logger.info("Scheduled daily job: %s (at %s UTC)", job.job_id, time_of_day)
        return job

    def _add_job(self, job: ScheduledJob) -> None:
        if job.task_name not in self._tasks:
            raise ValueError(f"Unknown task: {job.task_name}")
        with self._job_lock:
            self._jobs[job.job_id] = job
            self._push_heap(job)

    def remove_job(self, job_id: str) -> bool:
        with self._job_lock:
            return self._jobs.pop(job_id, None) is not None

    def get_jobs(self) -> list[ScheduledJob]:
        with self._job_lock:
            return list(self._jobs.values())

    def _push_heap(self, job: ScheduledJob) -> None:
        if not job.enabled or job.next_run is None:
            return
        self._heap_seq += 1
        heapq.heappush(self._job_heap, (job.next_run.timestamp(), self._heap_seq, job.job_id))

    # ==================== Execution ====================

    def run_now(self, task_name: str, **kwargs: Any) -> JobResult:
        """Run a registered task synchronously and record the result."""
        func = self._tasks.get(task_name)
        if func is None:
            raise ValueError(f"Unknown task: {task_name}")
        return self._invoke(task_name, func, kwargs)

    def _invoke(self, job_id: str, func: Callable[..., Any], kwargs: dict[str, Any]) -> JobResult:
        started_at = self._clock()
        try:
            result = func(**kwargs)
            job_result = JobResult(job_id, True, started_at, self._clock(), result=result)
        except Exception as exc:
            logger.error("Task %s failed: %s", job_id, exc, exc_info=True)
            job_result = JobResult(job_id, False, started_at, self._clock(), error=str(exc))
        self._record_history(job_result)
        return job_result

    def _execute_job(self, job_id: str) -> None:
        with self._job_lock:
            job = self._jobs.get(job_id)
        if job is None or not job.enabled:
            return

        result = self._invoke(job.job_id, self._tasks[job.task_name], job.kwargs)
        with self._job_lock:
            job.last_run = result.started_at
            job.run_count += 1
            if not result.success:
                job.failure_count += 1
            job.last_error = result.error
        logger.debug("Job %s finished in %.2fs", job.job_id, result.duration_seconds)

    def process_due_jobs(self) -> int:
        """Submit every due job to the worker pool. Returns how many were submitted."""
        now_ts = self._clock().timestamp()
        submitted = 0
        with self._job_lock:
            while self._job_heap and self._job_heap[0][0] <= now_ts:
                run_at_ts, _seq, job_id = heapq.heappop(self._job_heap)
                job = self._jobs.get(job_id)
                if job is None or not job.enabled or job.next_run is None:
                    continue
                if abs(job.next_run.timestamp() - run_at_ts) > 1e-6:
                    continue

                # reschedule before running so a long run cannot miss its next slot
                self._schedule_next_run(job, job.next_run)
                self._push_heap(job)

                if self._executor is None:
                    self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="CarePlanJob")
                self._executor.submit(self._execute_job, job_id)
                submitted += 1
        return submitted

    def _schedule_next_run(self, job: ScheduledJob, scheduled_for: datetime) -> None:
        if job.schedule_type is ScheduleType.DAILY:
            job.next_run = self._next_daily(job.time_of_day or "00:00")
            return

        interval = timedelta(seconds=int(job.interval_seconds or 60))
        next_run = scheduled_for + interval
        now = self._clock()
        if next_run <= now:
            # skip missed slots instead of piling them up
            skips = int((now - next_run) / interval) + 1
            next_run += interval * skips
        job.next_run = next_run

    def _next_daily(self, time_of_day: str) -> datetime:
        now = self._clock()
        at = parse_clock_time(time_of_day, default="00:00")
        next_run = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
        if next_run <= now:
            next_run += timedelta(days=1)
        return next_run

    def _record_history(self, result: JobResult) -> None:
        with self._job_lock:
            self._history.append(result)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history :]

    # ==================== Control ====================

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="CarePlanScheduler")
        self._thread.start()
        logger.info("Scheduler started with %d job(s)", len(self._jobs))

    def stop(self, wait: bool = True, timeout: float = 5.0) -> None:
        if not self._running:
            return
        self._running = False
        if wait and self._thread:
            self._thread.join(timeout=timeout)
        if self._executor:
            self._executor.shutdown(wait=wait)
            self._executor = None
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    def _run_loop(self) -> None:
        while self._running:
            try:
                self.process_due_jobs()
            except Exception as exc:
                logger.error("Error in scheduler loop: %s", exc, exc_info=True)
            time.sleep(self._check_interval)

    # ==================== Status ====================

    def get_history(self, job_id: str | None = None, limit: int = 100) -> list[JobResult]:
        with self._job_lock:
            results = [r for r in self._history if job_id is None or r.job_id == job_id]
        return sorted(results, key=lambda r: r.started_at, reverse=True)[: int(limit)]

    def get_status(self) -> dict[str, Any]:
        with self._job_lock:
            return {
                "running": self._running,
                "jobs": [job.to_dict() for job in self._jobs.values()],
                "history_size": len(self._history),
                "recent_failures": sum(1 for r in self._history[-20:] if not r.success),
            }
