from fastapi import APIRouter, Depends

from app.core.dependencies import get_clock, get_service_store, require_batch_admin
from app.services.shadow_progress_service import Clock, run_today_all
from app.services.shadow_store import ShadowStore

router = APIRouter(redirect_slashes=False)


@router.post("/run-today-all", dependencies=[Depends(require_batch_admin)])
async def admin_run_today_all(
    store: ShadowStore = Depends(get_service_store),
    clock: Clock = Depends(get_clock),
):
    """Pacing cycle for every enabled_race user (sysadmin or secret)"""
    return run_today_all(store, clock=clock)
