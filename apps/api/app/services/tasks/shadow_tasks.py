"""
Shadow Tasks

Scheduled counterparts of the /cron/shadow endpoints. Per-user failures are
recorded in the returned results; only a failure to start the batch (e.g.
the user listing itself) is retried.
"""

from typing import Any, Dict

from app.core.exceptions import StoreError
from app.services.shadow_progress_service import RunOptions, run_pacing_cycle, run_today_all, utc_now
from app.services.shadow_scheduler_service import generate_events_today_all
from app.services.tasks.base import celery_app, logger, service_store


@celery_app.task(
    name="shadow.run_today_all",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
)
def run_today_all_task(self) -> Dict[str, Any]:
    try:
        result = run_today_all(service_store(), clock=utc_now, cron=True)
    except StoreError as e:
        logger.error(f"[ShadowBatch] Batch could not start: {e}")
        raise self.retry(exc=e)

    failed = [r for r in result["results"] if not r.get("ok")]
    if failed:
        logger.warning(f"[ShadowBatch] {len(failed)}/{result['total']} users failed")
    return {"total": result["total"], "failed": len(failed)}


@celery_app.task(
    name="shadow.run_today_for_user",
    bind=True,
    max_retries=2,
    default_retry_delay=30,
)
def run_today_for_user_task(self, user_id: str) -> Dict[str, Any]:
    try:
        outcome = run_pacing_cycle(
            service_store(), user_id, clock=utc_now, options=RunOptions(cron=True)
        )
    except StoreError as e:
        raise self.retry(exc=e)
    return outcome.to_response()


@celery_app.task(
    name="shadow.generate_events_today_all",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
)
def generate_events_today_all_task(self) -> Dict[str, Any]:
    try:
        result = generate_events_today_all(service_store(), utc_now())
    except StoreError as e:
        logger.error(f"[ShadowSchedule] Instance generation could not start: {e}")
        raise self.retry(exc=e)

    inserted = sum(r.get("inserted", 0) for r in result["results"] if r.get("ok"))
    logger.info(
        f"[ShadowSchedule] {result['total_profiles']} profiles, {inserted} instances created"
    )
    return {"total_profiles": result["total_profiles"], "inserted": inserted}
