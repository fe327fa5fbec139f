from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.core.dependencies import get_clock, get_user_store
from app.core.flexible_auth import get_current_user
from app.services.shadow_progress_service import Clock
from app.services.shadow_scheduler_service import materialize_today, preview_today
from app.services.shadow_store import ShadowStore

router = APIRouter(redirect_slashes=False)


async def _dry_run(current_user, store, clock):
    return preview_today(store, current_user["id"], clock())


@router.get("/dry-run/today")
async def dry_run_today(
    current_user: Dict[str, Any] = Depends(get_current_user),
    store: ShadowStore = Depends(get_user_store),
    clock: Clock = Depends(get_clock),
):
    """Preview today's shadow task instances without writing them"""
    return await _dry_run(current_user, store, clock)


@router.post("/dry-run/today")
async def dry_run_today_post(
    current_user: Dict[str, Any] = Depends(get_current_user),
    store: ShadowStore = Depends(get_user_store),
    clock: Clock = Depends(get_clock),
):
    return await _dry_run(current_user, store, clock)


@router.post("/duplicate/today")
async def duplicate_today(
    current_user: Dict[str, Any] = Depends(get_current_user),
    store: ShadowStore = Depends(get_user_store),
    clock: Clock = Depends(get_clock),
):
    """Create today's missing shadow task instances for the session user"""
    return materialize_today(store, current_user["id"], clock())
