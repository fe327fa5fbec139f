"""
Request-scoped providers for the shadow endpoints.

Handlers never build Supabase clients themselves: they receive a ShadowStore
at the access level the route needs, and a clock. Tests swap both through
app.dependency_overrides.
"""

import json
from typing import Any, Dict, Optional

from fastapi import Depends, Request

from app.core.config import settings
from app.core.database import AccessLevel
from app.core.exceptions import AuthenticationError, AuthorizationError, ValidationError
from app.core.auth import cron_secret_matches
from app.core.flexible_auth import get_current_user, get_optional_user, provided_secret
from app.services.shadow_progress_service import Clock, utc_now
from app.services.shadow_store import ShadowStore


def get_clock() -> Clock:
    return utc_now


def get_service_store() -> ShadowStore:
    return ShadowStore.for_access(AccessLevel.SERVICE)


def get_user_store(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> ShadowStore:
    return ShadowStore.for_access(AccessLevel.USER, current_user["access_token"])


async def json_object_body(request: Request) -> Dict[str, Any]:
    """Request body as a JSON object; an empty body counts as {}."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError("Body must be a JSON object")
    if not isinstance(body, dict):
        raise ValidationError("Body must be a JSON object")
    return body


async def optional_payload(
    body: Dict[str, Any] = Depends(json_object_body),
) -> Optional[Dict[str, Any]]:
    payload = body.get("payload")
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")
    return payload


async def require_batch_admin(
    request: Request,
    current_user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    store: ShadowStore = Depends(get_service_store),
) -> None:
    """Admin batch gate: matching secret, else a sysadmin session (any session in development)."""
    if cron_secret_matches(provided_secret(request)):
        return
    if current_user is None:
        raise AuthenticationError("Unauthorized")
    if settings.is_development:
        return
    if not store.is_sys_admin(current_user["id"]):
        raise AuthorizationError("Forbidden")
