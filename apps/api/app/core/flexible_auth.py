"""
Flexible Authentication
Session user from either the Authorization header or the session cookie, plus
the secret gate used by cron and admin batch endpoints.

Supports:
- Authorization: Bearer <jwt>
- Cookie: access_token=<jwt>
- Cron/admin batch: x-cron-secret header or ?secret= query param
"""

from typing import Any, Dict, Optional

from fastapi import Request

from app.core.auth import cron_secret_matches, get_current_user_id
from app.core.exceptions import AuthenticationError, AuthorizationError

SESSION_COOKIE = "access_token"
CRON_SECRET_HEADER = "x-cron-secret"


def _extract_token(request: Request) -> Optional[str]:
    authorization = request.headers.get("authorization")
    if authorization:
        if not authorization.startswith("Bearer "):
            raise AuthenticationError("Invalid authorization format. Use 'Bearer <token>'")
        return authorization.replace("Bearer ", "").strip() or None
    return request.cookies.get(SESSION_COOKIE)


async def get_current_user(request: Request) -> Dict[str, Any]:
    """Authenticated session user: {"id", "access_token"}"""
    token = _extract_token(request)
    if not token:
        raise AuthenticationError("Unauthorized")

    user_id = get_current_user_id(token)
    if not user_id:
        raise AuthenticationError("Unauthorized")

    return {"id": user_id, "access_token": token}


async def get_optional_user(request: Request) -> Optional[Dict[str, Any]]:
    try:
        return await get_current_user(request)
    except AuthenticationError:
        return None


def provided_secret(request: Request) -> Optional[str]:
    return request.headers.get(CRON_SECRET_HEADER) or request.query_params.get("secret")


# =====================================================
# Gates
# =====================================================
async def require_cron_secret(request: Request) -> None:
    if not cron_secret_matches(provided_secret(request)):
        raise AuthorizationError("Forbidden")
