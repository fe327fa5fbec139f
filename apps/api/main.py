from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from app.core.config import settings
from app.core.analytics import initialize_posthog, shutdown_posthog
from app.core.exceptions import ShadowError, StoreError
from app.api.v1.router import api_router
from app.core.health import build_health_report, HealthStatus
from app.services.logger import logger

app = FastAPI(
    title="Nourish Shadow API",
    description="Shadow pacing, progress commits and nudges",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    redirect_slashes=False,  # A redirect would drop the Authorization header
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(ShadowError)
async def shadow_error_handler(request: Request, exc: ShadowError):
    if isinstance(exc, StoreError):
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code, content={"error": exc.client_message}
    )


@app.get("/health")
async def health_check():
    """Component status; 503 only when the store is unreachable."""
    report = await build_health_report(api_version=app.version)
    status_code = (
        status.HTTP_200_OK
        if report.status != HealthStatus.CRITICAL
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(content=report.model_dump(mode="json"), status_code=status_code)


@app.on_event("startup")
async def startup_event():
    if settings.POSTHOG_API_KEY:
        initialize_posthog()
        logger.info("PostHog analytics active")

    logger.info("Nourish Shadow API started")


@app.on_event("shutdown")
async def shutdown_event():
    if settings.POSTHOG_API_KEY:
        try:
            shutdown_posthog()
        except Exception as e:
            logger.warning(f"PostHog shutdown failed: {e}")

    logger.info("Nourish Shadow API shutting down")


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
    )
