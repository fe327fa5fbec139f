"""
PostHog Analytics Service

Product events for the pacing loop (nudges sent, batch runs) and forwarding
of server error logs. Every call is a no-op when POSTHOG_API_KEY is unset.
"""

import logging
from typing import Any, Dict, Optional

from posthog import Posthog

from app.core.config import settings

# Plain stdlib logger: app.services.logger forwards ERRORs here, so using it
# from this module would loop
logger = logging.getLogger(__name__)

SERVER_DISTINCT_ID = "server"

_client: Optional[Posthog] = None


def initialize_posthog() -> Optional[Posthog]:
    """Create the shared client once; None when analytics is disabled"""
    global _client

    if not settings.POSTHOG_API_KEY:
        return None
    if _client is not None:
        return _client

    try:
        _client = Posthog(
            project_api_key=settings.POSTHOG_API_KEY,
            host=settings.POSTHOG_HOST,
            enable_exception_autocapture=settings.POSTHOG_ENABLE_EXCEPTION_AUTOCAPTURE,
        )
    except Exception as e:
        logger.error(f"Failed to initialize PostHog: {e}")
        return None
    return _client


def track_event(
    distinct_id: str, event_name: str, properties: Optional[Dict[str, Any]] = None
) -> None:
    client = initialize_posthog()
    if client is None:
        return

    try:
        client.capture(
            distinct_id=distinct_id,
            event=event_name,
            properties={"service": "shadow-api", **(properties or {})},
        )
    except Exception as e:
        logger.error(f"Failed to track event {event_name}: {e}")


def capture_exception(exception: Exception, properties: Optional[Dict[str, Any]] = None) -> None:
    client = initialize_posthog()
    if client is None:
        return

    try:
        client.capture_exception(exception, properties=properties or {})
    except Exception as e:
        logger.error(f"Failed to capture exception: {e}")


def shutdown_posthog() -> None:
    """Flush queued events on shutdown"""
    global _client
    if _client is not None:
        _client.shutdown()
        _client = None
