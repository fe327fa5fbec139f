"""
Celery Signal Handlers

Hooks for Celery lifecycle events (e.g., worker startup).
"""

from celery.signals import worker_ready

from app.services.logger import logger


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    """
    Materialize today's shadow instances as soon as a worker starts instead
    of waiting for the first hourly beat tick.
    """
    from app.services.tasks import generate_events_today_all_task

    generate_events_today_all_task.apply_async(countdown=0)
    logger.info("[ShadowSchedule] Worker ready, initial instance generation queued")
