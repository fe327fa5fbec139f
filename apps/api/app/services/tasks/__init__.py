"""
Celery Tasks Package

Re-exports all tasks for Celery autodiscovery.

- shadow_tasks: pacing batch, single-user cron run, daily instance generation
"""

from app.services.tasks.shadow_tasks import (
    generate_events_today_all_task,
    run_today_all_task,
    run_today_for_user_task,
)

__all__ = [
    "generate_events_today_all_task",
    "run_today_all_task",
    "run_today_for_user_task",
]
