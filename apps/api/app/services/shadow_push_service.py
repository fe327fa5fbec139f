"""
Push fan-out for shadow nudges.

After a nudge message is stored, deliver it to every device the user has
registered:
- Web push subscriptions (pywebpush, VAPID). Subscriptions answering
  403/404/410 are gone for good and are deleted.
- FCM registration tokens (firebase-admin). Unregistered tokens are deleted.

Delivery is best effort: nothing here raises into the pacing run. The stored
user_messages row is the source of truth for the in-app inbox either way.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

import firebase_admin
from firebase_admin import credentials, messaging
from pywebpush import WebPushException, webpush

from app.core.config import settings
from app.core.exceptions import StoreError
from app.services.logger import logger

# Permanent delivery failures for a web push subscription
PRUNE_STATUS_CODES = (403, 404, 410)

TITLE_MAX = 60
BODY_MAX = 160
DEFAULT_TITLE = "Nourish"


def build_payload(title: str, body: str, url: str = "/") -> Dict[str, str]:
    return {
        "title": (title or "").strip()[:TITLE_MAX] or DEFAULT_TITLE,
        "body": (body or "").strip()[:BODY_MAX],
        "url": url or "/",
    }


def _ensure_firebase_app() -> firebase_admin.App:
    if firebase_admin._apps:
        return firebase_admin.get_app()

    raw = settings.FCM_SERVICE_ACCOUNT_JSON or ""
    if not raw:
        raise RuntimeError("FCM not configured. Set FCM_SERVICE_ACCOUNT_JSON.")

    try:
        info = json.loads(raw)
    except Exception as e:
        raise RuntimeError("FCM_SERVICE_ACCOUNT_JSON must be valid JSON") from e

    cred = credentials.Certificate(info)
    return firebase_admin.initialize_app(cred)


def _prune(delete, key: str, user_id: str) -> bool:
    """Remove a dead subscription or token; a failed delete never stops the fan-out."""
    try:
        delete(key)
    except StoreError as e:
        logger.warning(f"[ShadowPush] Could not prune dead target for {user_id}: {e}")
        return False
    return True


def _send_web_push(store, user_id: str, payload: Dict[str, str]) -> Dict[str, Any]:
    if not settings.VAPID_PUBLIC_KEY or not settings.VAPID_PRIVATE_KEY:
        return {"attempted": 0, "sent": 0, "pruned": 0, "reason": "vapid_not_configured"}

    subscriptions = store.list_push_subscriptions(user_id)
    data = json.dumps(payload)
    sent = 0
    pruned = 0

    for sub in subscriptions:
        endpoint = sub.get("endpoint")
        if not endpoint:
            continue
        try:
            webpush(
                subscription_info={
                    "endpoint": endpoint,
                    "keys": {"p256dh": sub.get("p256dh"), "auth": sub.get("auth")},
                },
                data=data,
                vapid_private_key=settings.VAPID_PRIVATE_KEY,
                vapid_claims={"sub": settings.VAPID_SUBJECT},
            )
            sent += 1
        except WebPushException as exc:
            status_code = getattr(exc.response, "status_code", None)
            if status_code in PRUNE_STATUS_CODES:
                logger.warning(
                    f"[ShadowPush] Deleting dead subscription for {user_id} ({status_code})"
                )
                if _prune(store.delete_push_subscription, endpoint, user_id):
                    pruned += 1
            else:
                logger.warning(f"[ShadowPush] Web push failed for {user_id}: {exc}")

    return {"attempted": len(subscriptions), "sent": sent, "pruned": pruned}


def _send_fcm(store, user_id: str, payload: Dict[str, str]) -> Dict[str, Any]:
    if not settings.FCM_SERVICE_ACCOUNT_JSON:
        return {"attempted": 0, "sent": 0, "pruned": 0, "reason": "fcm_not_configured"}

    tokens: List[str] = store.list_fcm_tokens(user_id)
    if not tokens:
        return {"attempted": 0, "sent": 0, "pruned": 0}

    _ensure_firebase_app()
    message = messaging.MulticastMessage(
        notification=messaging.Notification(title=payload["title"], body=payload["body"]),
        data={"url": payload["url"], "type": "shadow_nudge"},
        tokens=tokens,
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(channel_id="default"),
        ),
    )
    response = messaging.send_each_for_multicast(message)

    pruned = 0
    for token, item in zip(tokens, response.responses):
        if not item.success and isinstance(item.exception, messaging.UnregisteredError):
            if _prune(store.delete_fcm_token, token, user_id):
                pruned += 1

    return {"attempted": len(tokens), "sent": response.success_count, "pruned": pruned}


def send_nudge_push(store, user_id: str, title: str, body: str, url: str = "/shadow") -> Dict[str, Any]:
    """Deliver a stored nudge to all of the user's devices. Never raises."""
    payload = build_payload(title, body, url)
    result: Dict[str, Any] = {}

    for channel, sender in (("web", _send_web_push), ("fcm", _send_fcm)):
        try:
            result[channel] = sender(store, user_id, payload)
        except Exception as e:
            logger.warning(f"[ShadowPush] {channel} delivery failed for {user_id}: {e}")
            result[channel] = {"attempted": 0, "sent": 0, "pruned": 0, "error": str(e)}

    return result
