from fastapi import APIRouter
from app.api.v1.endpoints import (
    admin_shadow,
    cron_shadow,
    shadow_progress,
    shadow_routine,
)

# Create main API router
api_router = APIRouter(
    redirect_slashes=False
)  # Disable redirects to preserve Authorization header

# Include all endpoint routers
api_router.include_router(
    shadow_progress.router, prefix="/shadow/progress", tags=["Shadow Progress"]
)
api_router.include_router(
    shadow_routine.router, prefix="/shadow/routine", tags=["Shadow Routine"]
)
api_router.include_router(
    admin_shadow.router, prefix="/admin/shadow", tags=["Admin Shadow"]
)
api_router.include_router(cron_shadow.router, prefix="/cron/shadow", tags=["Cron"])
