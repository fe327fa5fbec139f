"""
Shared utilities for Celery tasks.

Tasks act on behalf of arbitrary users, so they always use the service
store.
"""

from app.core.celery_app import celery_app
from app.core.database import AccessLevel
from app.services.logger import logger
from app.services.shadow_store import ShadowStore


def service_store() -> ShadowStore:
    return ShadowStore.for_access(AccessLevel.SERVICE)


# Re-export common imports for use in task modules
__all__ = [
    "celery_app",
    "logger",
    "service_store",
]
