"""
Workers module for background jobs.

This module contains:
- unified_scheduler: heap-based interval/daily scheduler
- scheduled_tasks: task definitions (plan.*, notify.*, maintenance.*)
"""

__all__ = [
    "UnifiedScheduler",
    "register_all_tasks",
    "schedule_default_jobs",
]

from app.workers.unified_scheduler import UnifiedScheduler
from app.workers.scheduled_tasks import register_all_tasks, schedule_default_jobs
