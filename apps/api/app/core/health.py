"""
Health check utilities for the shadow pacing API.

Structured status for the pieces a pacing run depends on: configuration,
Supabase, the Celery broker/workers and the push delivery credentials.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import redis
from pydantic import BaseModel, Field

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import get_supabase_client


class HealthStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    CRITICAL = "critical"
    NOT_CONFIGURED = "not_configured"


class HealthCheckResult(BaseModel):
    component: str
    status: HealthStatus
    details: str = ""
    latency_ms: Optional[float] = Field(default=None, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HealthReport(BaseModel):
    status: HealthStatus
    version: str
    environment: str
    timestamp: datetime
    checks: List[HealthCheckResult]


async def _probe(
    component: str,
    call: Callable[[], Any],
    describe: Callable[[Any], str],
    failure_status: HealthStatus,
) -> HealthCheckResult:
    """Run a blocking probe off the event loop and time it."""
    start = time.perf_counter()
    try:
        outcome = await asyncio.to_thread(call)
        details = describe(outcome)
        status = HealthStatus.OK
    except Exception as exc:  # pragma: no cover - network failures
        details = f"{component} probe failed: {exc}"
        status = failure_status
    return HealthCheckResult(
        component=component,
        status=status,
        details=details,
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
    )


async def _check_supabase() -> HealthCheckResult:
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
        return HealthCheckResult(
            component="supabase",
            status=HealthStatus.NOT_CONFIGURED,
            details="Supabase credentials are not set",
        )

    def call():
        return get_supabase_client().table("shadow_config").select("id").limit(1).execute()

    # The pacing core cannot run without its store
    return await _probe(
        "supabase", call, lambda _: "shadow_config readable", HealthStatus.CRITICAL
    )


async def _check_redis() -> HealthCheckResult:
    if not settings.REDIS_URL:
        return HealthCheckResult(
            component="redis",
            status=HealthStatus.NOT_CONFIGURED,
            details="Redis URL is not configured",
        )

    def call():
        client = redis.from_url(
            settings.redis_connection_url, socket_connect_timeout=2, socket_timeout=2
        )
        return client.ping()

    return await _probe("redis", call, lambda _: "Broker reachable", HealthStatus.DEGRADED)


async def _check_celery() -> HealthCheckResult:
    result = await _probe(
        "celery",
        lambda: celery_app.control.ping(timeout=1.0),
        lambda replies: f"{len(replies or [])} worker(s) responding",
        HealthStatus.DEGRADED,
    )
    # No replies: beat batches will not run until a worker starts
    if result.status == HealthStatus.OK and result.details.startswith("0 "):
        result.status = HealthStatus.DEGRADED
    return result


async def _check_push() -> HealthCheckResult:
    channels = {
        "web_push": bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY),
        "fcm": bool(settings.FCM_SERVICE_ACCOUNT_JSON),
    }
    if not any(channels.values()):
        return HealthCheckResult(
            component="push",
            status=HealthStatus.NOT_CONFIGURED,
            details="No push channel configured; nudges are stored only",
            metadata=channels,
        )

    return HealthCheckResult(
        component="push",
        status=HealthStatus.OK,
        details="Push delivery configured",
        metadata=channels,
    )


async def _check_environment() -> HealthCheckResult:
    metadata = {
        "environment": settings.ENVIRONMENT,
        "default_timezone": settings.DEFAULT_TIMEZONE,
        "cron_secret_set": bool(settings.CRON_SECRET),
    }
    if not settings.CRON_SECRET:
        return HealthCheckResult(
            component="environment",
            status=HealthStatus.DEGRADED,
            details="CRON_SECRET is not set; cron endpoints reject every call",
            metadata=metadata,
        )

    return HealthCheckResult(
        component="environment",
        status=HealthStatus.OK,
        details="Environment variables loaded",
        metadata=metadata,
    )


async def gather_health_checks() -> List[HealthCheckResult]:
    checks = await asyncio.gather(
        _check_environment(),
        _check_supabase(),
        _check_redis(),
        _check_celery(),
        _check_push(),
    )

    return list(checks)


def _aggregate_status(checks: List[HealthCheckResult]) -> HealthStatus:
    statuses = {check.status for check in checks}
    if HealthStatus.CRITICAL in statuses:
        return HealthStatus.CRITICAL
    if HealthStatus.DEGRADED in statuses:
        return HealthStatus.DEGRADED
    if statuses == {HealthStatus.NOT_CONFIGURED}:
        return HealthStatus.NOT_CONFIGURED
    return HealthStatus.OK


async def build_health_report(api_version: str) -> HealthReport:
    checks = await gather_health_checks()

    return HealthReport(
        status=_aggregate_status(checks),
        version=api_version,
        environment=settings.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )
