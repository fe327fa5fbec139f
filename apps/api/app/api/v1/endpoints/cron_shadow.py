"""
Cron entry points. Every route is gated by the shared cron secret
(x-cron-secret header or ?secret= query param) and acts with the service
store on behalf of arbitrary users.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.core.dependencies import get_clock, get_service_store, json_object_body
from app.core.exceptions import ValidationError
from app.core.flexible_auth import require_cron_secret
from app.services.shadow_progress_service import Clock, RunOptions, run_pacing_cycle, run_today_all
from app.services.shadow_scheduler_service import generate_events_today_all
from app.services.shadow_store import ShadowStore

router = APIRouter(redirect_slashes=False, dependencies=[Depends(require_cron_secret)])


@router.post("/run-today")
async def cron_run_today(
    body: Dict[str, Any] = Depends(json_object_body),
    store: ShadowStore = Depends(get_service_store),
    clock: Clock = Depends(get_clock),
):
    """Single-user pacing cycle, audited with cron: true"""
    user_id = body.get("user_id")
    if not user_id or not isinstance(user_id, str):
        raise ValidationError("user_id is required")

    outcome = run_pacing_cycle(
        store, user_id, clock=clock, options=RunOptions(cron=True)
    )
    return outcome.to_response()


@router.post("/run-today-all")
async def cron_run_today_all(
    store: ShadowStore = Depends(get_service_store),
    clock: Clock = Depends(get_clock),
):
    return run_today_all(store, clock=clock, cron=True)


@router.post("/generate-events-today-all")
async def cron_generate_events_today_all(
    store: ShadowStore = Depends(get_service_store),
    clock: Clock = Depends(get_clock),
):
    return generate_events_today_all(store, clock())
