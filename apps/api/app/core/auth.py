import hmac
from typing import Optional, Dict, Any

from jose import JWTError, jwt

from app.core.config import settings


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify and decode a Supabase-compatible session JWT"""
    if not token or not settings.SECRET_KEY:
        return None
    try:
        # Disable audience verification since we use custom audience "authenticated"
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"verify_aud": False},
        )
        return payload
    except JWTError:
        return None


def get_current_user_id(token: str) -> Optional[str]:
    """User id of an access token, or None if the token is invalid"""
    payload = verify_token(token)
    if not payload:
        return None

    # Refresh tokens must never authenticate a request
    token_type = payload.get("type")
    if token_type is not None and token_type != "access":
        return None

    user_id = payload.get("user_id") or payload.get("sub")
    return str(user_id) if user_id else None


def cron_secret_matches(provided: Optional[str]) -> bool:
    """Constant-time comparison against CRON_SECRET; an unset secret never matches"""
    expected = settings.CRON_SECRET or ""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
