"""
Schedule-aligned pacing metrics (cron batch only).

The user's own active tasks are placed on the same anchor grid the routine
scheduler uses; a task's slot is replaced by the minute of today's event for
it when one exists. Against that schedule:

- time_saved_minutes  sum of (scheduled minute - completion minute) over
                      completed scheduled tasks; positive = ahead of plan
- pace_consistency    max(0, 1 - cv) of the gaps between completions,
                      None with fewer than two completions
- shadow_done_now     scheduled slots at or before the current local minute
- delta_now           user_done_now - shadow_done_now
- user_speed_now      completions within the last hour
- shadow_speed_now    slots falling due within the next hour
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from app.services.day_bucketing import local_date_key, minute_of_day, parse_timestamp
from app.services.shadow_scheduler_service import layout_anchor_slots, slot_start_minutes


@dataclass
class ScheduleMetrics:
    user_done_now: int = 0
    shadow_done_now: int = 0
    delta_now: int = 0
    time_saved_minutes: int = 0
    pace_consistency: Optional[float] = None
    user_speed_now: int = 0
    shadow_speed_now: int = 0
    passed_task_ids: List[str] = field(default_factory=list)


def own_active_tasks(tasks: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        t
        for t in tasks
        if t.get("active", True) is not False and (t.get("owner_type") or "user") == "user"
    ]


def scheduled_minutes(
    tasks: List[Dict[str, Any]], events: List[Dict[str, Any]], tz: str, day: str
) -> Dict[str, int]:
    """Task id -> scheduled local minute for today, with event overrides."""
    overrides: Dict[str, int] = {}
    for event in events:
        when = event.get("due_end") or event.get("due_start")
        task_id = event.get("routine_item_id")
        if not when or not task_id:
            continue
        if local_date_key(when, tz) != day:
            continue
        overrides[str(task_id)] = minute_of_day(when, tz)

    schedule: Dict[str, int] = {}
    for task, anchor, index in layout_anchor_slots(own_active_tasks(tasks)):
        task_id = str(task["id"])
        schedule[task_id] = overrides.get(task_id, slot_start_minutes(anchor, index))
    return schedule


def pace_consistency(completed_at: List[datetime]) -> Optional[float]:
    if len(completed_at) < 2:
        return None

    ordered = sorted(completed_at)
    gaps = [
        (later - earlier).total_seconds() / 60.0
        for earlier, later in zip(ordered, ordered[1:])
    ]
    mean = sum(gaps) / len(gaps)
    if mean <= 0:
        return 0.0

    variance = sum((g - mean) ** 2 for g in gaps) / len(gaps)
    cv = math.sqrt(variance) / mean
    return max(0.0, 1.0 - cv)


def compute_schedule_metrics(
    *,
    tasks: List[Dict[str, Any]],
    events: List[Dict[str, Any]],
    completion_rows: List[Dict[str, Any]],
    own_task_ids: Iterable[str],
    tz: str,
    day: str,
    now: datetime,
) -> ScheduleMetrics:
    schedule = scheduled_minutes(tasks, events, tz, day)
    own = {str(t) for t in own_task_ids}

    # Last completion per task wins; every completion counts toward pace
    completed_at: Dict[str, datetime] = {}
    completion_times: List[datetime] = []
    for row in completion_rows:
        task_id = row.get("task_id")
        created_at = row.get("created_at")
        if not task_id or not created_at or str(task_id) not in own:
            continue
        stamp = parse_timestamp(created_at)
        completed_at[str(task_id)] = stamp
        completion_times.append(stamp)

    time_saved = 0
    for task_id, stamp in completed_at.items():
        if task_id in schedule:
            time_saved += schedule[task_id] - minute_of_day(stamp, tz)

    now_utc = parse_timestamp(now)
    now_minute = minute_of_day(now_utc, tz)
    shadow_done_now = sum(1 for m in schedule.values() if m <= now_minute)
    shadow_done_in_60 = sum(1 for m in schedule.values() if m <= now_minute + 60)
    hour_ago = now_utc - timedelta(minutes=60)

    user_done_now = len(completed_at)
    return ScheduleMetrics(
        user_done_now=user_done_now,
        shadow_done_now=shadow_done_now,
        delta_now=user_done_now - shadow_done_now,
        time_saved_minutes=time_saved,
        pace_consistency=pace_consistency(completion_times),
        user_speed_now=sum(1 for t in completion_times if t >= hour_ago),
        shadow_speed_now=max(0, shadow_done_in_60 - shadow_done_now),
        passed_task_ids=[tid for tid, m in schedule.items() if m <= now_minute],
    )
