"""
Celery application for the shadow batches.

Redis is both broker and result backend. Beat triggers the same batch
functions that the /cron/shadow endpoints expose over HTTP.
"""

from __future__ import annotations

import ssl
from typing import Dict, Optional

from celery import Celery
from celery.schedules import crontab

from app.core.config import settings


def _redis_tls_options(url: str) -> Optional[Dict[str, int]]:
    """TLS options for rediss:// URLs that carry no ssl_cert_reqs of their own."""
    if not url or not url.startswith("rediss://") or "ssl_cert_reqs" in url:
        return None
    return {"ssl_cert_reqs": ssl.CERT_NONE}


SHADOW_BEAT_SCHEDULE = {
    # Pacing cycle with extended metrics for every enabled_race user
    "shadow-run-today-all": {
        "task": "shadow.run_today_all",
        "schedule": crontab(minute="*/30"),
    },
    # Hourly so each timezone's midnight is picked up within the hour
    "shadow-generate-events-today-all": {
        "task": "shadow.generate_events_today_all",
        "schedule": crontab(minute=5),
    },
}

broker_url = settings.redis_connection_url
tls_options = _redis_tls_options(broker_url)

celery_app = Celery(
    "nourish",
    broker=broker_url,
    backend=broker_url,
    include=["app.services.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Batches walk users one by one
    task_time_limit=60 * 20,
    task_soft_time_limit=60 * 18,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    result_expires=3600,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_use_ssl=tls_options,
    redis_backend_use_ssl=tls_options,
    beat_schedule=SHADOW_BEAT_SCHEDULE,
)
