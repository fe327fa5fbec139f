from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from app.core.dependencies import (
    get_clock,
    get_service_store,
    get_user_store,
    optional_payload,
)
from app.core.flexible_auth import get_current_user
from app.services.shadow_progress_service import (
    Clock,
    commit_today,
    get_today_commit,
    nudge_from_commit,
    preview_delta,
    run_pacing_cycle,
)
from app.services.shadow_store import ShadowStore

router = APIRouter(redirect_slashes=False)


@router.get("/commit")
async def read_today_commit(
    current_user: Dict[str, Any] = Depends(get_current_user),
    store: ShadowStore = Depends(get_user_store),
    clock: Clock = Depends(get_clock),
):
    """Today's stored commit for the session user (commit may be null)"""
    return get_today_commit(store, current_user["id"], clock=clock)


@router.post("/commit")
async def commit_progress(
    payload: Optional[Dict[str, Any]] = Depends(optional_payload),
    current_user: Dict[str, Any] = Depends(get_current_user),
    store: ShadowStore = Depends(get_user_store),
    clock: Clock = Depends(get_clock),
):
    """Recompute and upsert today's commit; no gating, no nudge"""
    commit = commit_today(
        store, current_user["id"], clock=clock, extra_payload=payload
    )
    return {"ok": True, **commit}


@router.post("/run-today")
async def run_today(
    current_user: Dict[str, Any] = Depends(get_current_user),
    store: ShadowStore = Depends(get_user_store),
    service_store: ShadowStore = Depends(get_service_store),
    clock: Clock = Depends(get_clock),
):
    """Full pacing cycle for the session user, including the nudge gate"""
    outcome = run_pacing_cycle(
        store,
        current_user["id"],
        clock=clock,
        service_store=service_store,
    )
    return outcome.to_response()


@router.get("/delta")
async def read_delta(
    current_user: Dict[str, Any] = Depends(get_current_user),
    store: ShadowStore = Depends(get_user_store),
    clock: Clock = Depends(get_clock),
):
    return preview_delta(store, current_user["id"], clock=clock)


@router.post("/nudge")
async def nudge_today(
    current_user: Dict[str, Any] = Depends(get_current_user),
    store: ShadowStore = Depends(get_user_store),
    service_store: ShadowStore = Depends(get_service_store),
    clock: Clock = Depends(get_clock),
):
    """Gate and send a nudge for today's stored commit"""
    return nudge_from_commit(
        store, current_user["id"], clock=clock, service_store=service_store
    )
