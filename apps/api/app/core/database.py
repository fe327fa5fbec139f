"""
Database Configuration

Supabase clients for REST API access (already pooled via PostgREST).

Two access levels exist and callers pick one explicitly:
- AccessLevel.USER: anon-key client authenticated as the caller's JWT.
  Row-level security applies, so reads/writes are limited to that user.
- AccessLevel.SERVICE: shared service-role client. Bypasses RLS; only batch,
  cron and admin entry points act on behalf of arbitrary users with it.

Clients are created on first use so importing the app never requires
Supabase credentials (tests run without them).
"""

from enum import Enum
from typing import Optional

from supabase import create_client, Client
from app.core.config import settings
from app.core.exceptions import AuthenticationError, StoreError


class AccessLevel(str, Enum):
    USER = "user"
    SERVICE = "service"


_service_client: Optional[Client] = None


def _service() -> Client:
    global _service_client

    if _service_client is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
            raise StoreError("Supabase service credentials are not configured")
        _service_client = create_client(
            settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY
        )
    return _service_client


def _user_scoped(access_token: str) -> Client:
    if not settings.SUPABASE_URL or not settings.SUPABASE_ANON_KEY:
        raise StoreError("Supabase anon credentials are not configured")

    # One client per request: the PostgREST auth header is per-caller state
    client = create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
    client.postgrest.auth(access_token)
    return client


def get_supabase_client(
    access: AccessLevel = AccessLevel.SERVICE,
    access_token: Optional[str] = None,
) -> Client:
    """
    Get a Supabase client for the requested access level.

    USER access requires the caller's access token; it is the only way the
    RLS boundary is enforced, so a missing token is an authentication error
    rather than a silent upgrade to SERVICE.
    """
    if access == AccessLevel.USER:
        if not access_token:
            raise AuthenticationError("Access token required for user-scoped access")
        return _user_scoped(access_token)
    return _service()
