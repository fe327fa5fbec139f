"""
Notification gate for shadow nudges.

Two layers, checked in order against the user's messages created since their
local midnight:
1. daily cap      - count >= max_notifications_per_day -> rate_limit_daily
2. min spacing    - now - latest < min_seconds_between_notifications
                    -> rate_limit_spacing

Admitted decisions write one user_messages row. The row carries an
idempotency key "{user_id}:{day}:{n}" (n = today's count + 1) backed by a
unique index, so two runs racing past the checks cannot both insert the n-th
message of the day: the loser's insert is ignored and it reports
rate_limit_spacing, which is what it would have seen had it run second.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.services.day_bucketing import local_midnight_utc, parse_timestamp, to_iso
from app.services.logger import logger
from app.services.pace_engine import DecisionKind, compose_message
from app.services.shadow_config_service import ShadowConfig

REASON_DAILY = "rate_limit_daily"
REASON_SPACING = "rate_limit_spacing"
REASON_NOOP = "noop"

NUDGE_URL = "/shadow"


@dataclass
class GateResult:
    admitted: bool
    reason: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    message: Optional[Dict[str, Any]] = field(default=None)

    @property
    def message_id(self) -> Optional[str]:
        if self.message and self.message.get("id") is not None:
            return str(self.message["id"])
        return None


def evaluate_gate(
    messages_today: List[Dict[str, Any]], cfg: ShadowConfig, now: datetime
) -> Optional[str]:
    """Return the rejection reason for a new nudge, or None if admitted."""
    if len(messages_today) >= cfg.max_notifications_per_day:
        return REASON_DAILY

    stamps = [parse_timestamp(m["created_at"]) for m in messages_today if m.get("created_at")]
    if stamps:
        elapsed = (parse_timestamp(now) - max(stamps)).total_seconds()
        if elapsed < cfg.min_seconds_between_notifications:
            return REASON_SPACING
    return None


def nudge_idempotency_key(user_id: str, day: str, sequence: int) -> str:
    return f"{user_id}:{day}:{sequence}"


def gate_and_send(
    store,
    *,
    user_id: str,
    day: str,
    tz: str,
    cfg: ShadowConfig,
    decision_kind: DecisionKind,
    delta: int,
    target_today: int,
    completed_today: int,
    now: datetime,
) -> GateResult:
    """Run the rate-limit checks and, if admitted, write the nudge message."""
    if DecisionKind(decision_kind) == DecisionKind.NOOP:
        return GateResult(admitted=False, reason=REASON_NOOP)

    since = to_iso(local_midnight_utc(day, tz))
    messages_today = store.list_messages_since(user_id, since)

    reason = evaluate_gate(messages_today, cfg, now)
    if reason:
        logger.info(f"[ShadowGate] Nudge suppressed for {user_id}: {reason}")
        return GateResult(admitted=False, reason=reason)

    title, body = compose_message(decision_kind, delta, target_today, completed_today)
    stored = store.insert_message(
        {
            "user_id": user_id,
            "title": title,
            "body": body,
            "url": NUDGE_URL,
            "idempotency_key": nudge_idempotency_key(
                user_id, day, len(messages_today) + 1
            ),
        }
    )

    if stored is None:
        logger.info(f"[ShadowGate] Concurrent nudge already written for {user_id} on {day}")
        return GateResult(admitted=False, reason=REASON_SPACING)

    return GateResult(admitted=True, title=title, body=body, message=stored)
