"""
Shadow routine scheduler.

Lays a user's active shadow-mirrored tasks out on today's anchor grid and
materializes one shadow_task_instances row per mirrored task:

    anchor    base   order within anchor
    morning   09:00  order_hint asc (nulls last), then created_at asc
    midday    13:00
    evening   18:00  slot i starts at base + i * 15 min, lasts 10 min
    night     21:00
    anytime   15:00  (also used for missing/unknown anchors)

Wall-clock slots are built in the user's timezone and stored as UTC instants.
Materialization skips mirrored tasks that already have an instance for the
day and inserts the rest with insert-or-ignore on
(shadow_task_id, planned_date_local), so concurrent runs cannot duplicate.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.exceptions import ValidationError
from app.services.day_bucketing import (
    local_wall_time_utc,
    parse_timestamp,
    resolve_user_timezone,
    to_iso,
    today_in_tz,
)
from app.services.logger import logger

ANCHOR_ORDER = ["morning", "midday", "evening", "night", "anytime"]
ANCHOR_BASE_TIMES: Dict[str, Tuple[int, int]] = {
    "morning": (9, 0),
    "midday": (13, 0),
    "evening": (18, 0),
    "night": (21, 0),
    "anytime": (15, 0),
}
SPACING_MINUTES = 15
DURATION_MINUTES = 10

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def anchor_of(task: Optional[Dict[str, Any]]) -> str:
    anchor = str((task or {}).get("time_anchor") or "anytime")
    return anchor if anchor in ANCHOR_BASE_TIMES else "anytime"


def _task_sort_key(task: Optional[Dict[str, Any]]):
    task = task or {}
    hint = task.get("order_hint")
    created = task.get("created_at")
    return (
        ANCHOR_ORDER.index(anchor_of(task)),
        float("inf") if hint is None else float(hint),
        parse_timestamp(created) if created else _FAR_FUTURE,
    )


def layout_anchor_slots(
    items: List[Any], task_of: Callable[[Any], Optional[Dict[str, Any]]] = lambda t: t
) -> List[Tuple[Any, str, int]]:
    """
    Order items on the anchor grid.

    Returns (item, anchor, index_within_anchor) in grid order. `task_of`
    extracts the task dict carrying time_anchor/order_hint/created_at.
    """
    ordered = sorted(items, key=lambda item: _task_sort_key(task_of(item)))
    counters = {anchor: 0 for anchor in ANCHOR_ORDER}
    slots: List[Tuple[Any, str, int]] = []
    for item in ordered:
        anchor = anchor_of(task_of(item))
        slots.append((item, anchor, counters[anchor]))
        counters[anchor] += 1
    return slots


def slot_start_minutes(anchor: str, index: int) -> int:
    hour, minute = ANCHOR_BASE_TIMES[anchor]
    return hour * 60 + minute + index * SPACING_MINUTES


def nested_task(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The joined tasks record of a shadow_tasks row (PostgREST may return a list)."""
    task = row.get("tasks")
    if isinstance(task, list):
        return task[0] if task else None
    return task


def active_mirrors(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        r
        for r in rows
        if r.get("status") == "active"
        and (nested_task(r) or {}).get("active", True) is not False
    ]


def plan_instances(
    shadow_task_rows: List[Dict[str, Any]], day: str, tz: str
) -> List[Dict[str, Any]]:
    """Planned slot for every active mirrored task, in grid order."""
    plan: List[Dict[str, Any]] = []
    for row, anchor, index in layout_anchor_slots(active_mirrors(shadow_task_rows), nested_task):
        task = nested_task(row) or {}
        start = local_wall_time_utc(day, 0, slot_start_minutes(anchor, index), tz)
        end = start + timedelta(minutes=DURATION_MINUTES)
        plan.append(
            {
                "planned_date_local": day,
                "planned_start_at": to_iso(start),
                "planned_end_at": to_iso(end),
                "anchor": anchor,
                "shadow_task_id": row["id"],
                "task_id": row.get("task_id"),
                "title": task.get("title"),
                "order_hint": task.get("order_hint"),
            }
        )
    return plan


def _instance_row(planned: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "shadow_task_id": planned["shadow_task_id"],
        "planned_start_at": planned["planned_start_at"],
        "planned_end_at": planned["planned_end_at"],
        "planned_date_local": planned["planned_date_local"],
        "status": "pending",
        "progress": 0,
    }


def _require_profile(store, user_id: str) -> Dict[str, Any]:
    profile = store.fetch_shadow_profile(user_id)
    if not profile:
        raise ValidationError("Missing shadow_profile. Run /api/shadow/audit/fix first.")
    return profile


def preview_today(store, user_id: str, now: datetime, fallback_tz: str = "UTC") -> Dict[str, Any]:
    """Dry run: today's plan for the user, nothing persisted."""
    tz = resolve_user_timezone(store, user_id, fallback_tz)
    day = today_in_tz(tz, now)
    profile = _require_profile(store, user_id)
    preview = plan_instances(store.list_shadow_tasks(profile["id"]), day, tz)
    return {
        "ok": True,
        "timezone": tz,
        "planned_date_local": day,
        "count": len(preview),
        "preview": preview,
    }


def materialize_for_profile(
    store, profile: Dict[str, Any], tz: str, now: datetime
) -> Dict[str, Any]:
    day = today_in_tz(tz, now)
    candidates = plan_instances(store.list_shadow_tasks(profile["id"]), day, tz)

    existing = store.list_instances(day, [c["shadow_task_id"] for c in candidates])
    existing_ids = {e.get("shadow_task_id") for e in existing}
    to_insert = [_instance_row(c) for c in candidates if c["shadow_task_id"] not in existing_ids]

    inserted = store.insert_instances(to_insert)
    return {
        "planned_date_local": day,
        "created_instances": len(inserted),
        "total_candidates": len(candidates),
    }


def materialize_today(store, user_id: str, now: datetime, fallback_tz: str = "UTC") -> Dict[str, Any]:
    """Create today's missing shadow_task_instances for one user."""
    tz = resolve_user_timezone(store, user_id, fallback_tz)
    profile = _require_profile(store, user_id)
    result = materialize_for_profile(store, profile, tz, now)
    logger.info(
        f"[ShadowSchedule] {user_id}: created {result['created_instances']}"
        f"/{result['total_candidates']} instances for {result['planned_date_local']}"
    )
    return {"ok": True, **result}


def generate_events_today_all(store, now: datetime) -> Dict[str, Any]:
    """
    Materialize today's instances for every user with a shadow profile.

    Sequential over profiles; a failing profile is recorded in its result
    entry and the loop continues.
    """
    profiles = store.list_shadow_profiles()
    results: List[Dict[str, Any]] = []

    for profile in profiles:
        user_id = str(profile.get("user_id"))
        try:
            tz = resolve_user_timezone(store, user_id)
            outcome = materialize_for_profile(store, profile, tz, now)
            results.append(
                {"user_id": user_id, "ok": True, "inserted": outcome["created_instances"]}
            )
        except Exception as e:
            logger.warning(f"[ShadowSchedule] Profile for {user_id} failed: {e}")
            results.append({"user_id": user_id, "ok": False, "error": str(e) or "failed"})

    return {"ok": True, "total_profiles": len(profiles), "results": results}
