"""
Shadow progress pipeline.

One pacing cycle per user and day:

    resolve config -> (race disabled: stop)
    -> resolve timezone -> bucket today
    -> count own completions -> decide vs. target
    -> commit (upsert on user_id+day) + daily aggregate (upsert on user_id+date)
    -> (noop: stop) -> notification gate -> message + push fan-out

The interactive, cron single-user, admin batch and cron batch entry points
all call run_pacing_cycle; they differ only in the store they pass (access
level), the audit flags and whether extended schedule metrics are computed.

The clock is injected so a cycle is reproducible: the same completions on the
same day always produce the same commit row.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from app.core.analytics import SERVER_DISTINCT_ID, track_event
from app.core.exceptions import StoreError
from app.services.day_bucketing import resolve_user_timezone, to_iso, today_in_tz
from app.services.logger import logger
from app.services.notification_gate import GateResult, gate_and_send
from app.services.pace_engine import DecisionKind, decide, target_for
from app.services.schedule_metrics import compute_schedule_metrics
from app.services.shadow_config_service import ShadowConfig, get_shadow_config
from app.services.shadow_push_service import send_nudge_push

Clock = Callable[[], datetime]
Notifier = Callable[..., Dict[str, Any]]

# ProgressCommit payload keys only the pacing run may set
SERVER_PAYLOAD_KEYS = frozenset({"tz", "completedTaskIds", "batch", "cron"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunOptions:
    batch: bool = False
    cron: bool = False
    extended_metrics: bool = False
    send_push: bool = True
    extra_payload: Dict[str, Any] = field(default_factory=dict)

    def audit_flags(self) -> Dict[str, Any]:
        flags: Dict[str, Any] = {}
        if self.batch:
            flags["batch"] = True
        if self.cron:
            flags["cron"] = True
        return flags


@dataclass
class ProgressSnapshot:
    user_id: str
    tz: str
    day: str
    completed_task_ids: List[str]
    completion_rows: List[Dict[str, Any]]
    completed_today: int
    target_today: int
    delta: int
    decision_kind: DecisionKind


@dataclass
class PacingOutcome:
    user_id: str
    skipped_reason: Optional[str] = None
    snapshot: Optional[ProgressSnapshot] = None
    commit: Optional[Dict[str, Any]] = None
    gate: Optional[GateResult] = None
    push: Optional[Dict[str, Any]] = None

    @property
    def nudged(self) -> bool:
        return bool(self.gate and self.gate.admitted)

    def to_response(self) -> Dict[str, Any]:
        if self.snapshot is None:
            return {"ok": False, "reason": self.skipped_reason}

        snap = self.snapshot
        response: Dict[str, Any] = {
            "ok": True,
            "decision_kind": snap.decision_kind.value,
            "delta": snap.delta,
            "target_today": snap.target_today,
            "completed_today": snap.completed_today,
            "nudged": self.nudged,
        }
        if self.gate is not None and self.gate.reason and self.gate.reason != "noop":
            response["reason"] = self.gate.reason
        if self.nudged:
            response["message_id"] = self.gate.message_id
            response["title"] = self.gate.title
            response["body"] = self.gate.body
        return response


# =====================================================
# Completion aggregation
# =====================================================
def aggregate_completions(store, user_id: str, day: str):
    """
    Distinct task ids the user completed on `day`, restricted to tasks they
    own (owner_type 'user', missing owner_type counts as 'user'). Shadow-owned
    tasks never count toward the user's pace.

    Returns (completed_task_ids, raw_completion_rows).
    """
    rows = store.list_completions(user_id, day)

    distinct: List[str] = []
    seen = set()
    for row in rows:
        task_id = row.get("task_id")
        if task_id is None or str(task_id) in seen:
            continue
        seen.add(str(task_id))
        distinct.append(str(task_id))

    if not distinct:
        return [], rows

    owned = {
        str(t["id"])
        for t in store.fetch_tasks_by_ids(distinct)
        if (t.get("owner_type") or "user") == "user"
    }
    return [task_id for task_id in distinct if task_id in owned], rows


def compute_snapshot(
    store, user_id: str, cfg: ShadowConfig, tz: str, now: datetime
) -> ProgressSnapshot:
    day = today_in_tz(tz, now)
    completed_ids, rows = aggregate_completions(store, user_id, day)
    completed_today = len(completed_ids)
    target_today = target_for(cfg)
    delta, decision_kind = decide(completed_today, target_today)
    return ProgressSnapshot(
        user_id=user_id,
        tz=tz,
        day=day,
        completed_task_ids=completed_ids,
        completion_rows=rows,
        completed_today=completed_today,
        target_today=target_today,
        delta=delta,
        decision_kind=decision_kind,
    )


def _race_update_payload(snap: ProgressSnapshot, options: RunOptions) -> Dict[str, Any]:
    return {
        "tz": snap.tz,
        "day": snap.day,
        "completed_today": snap.completed_today,
        "target_today": snap.target_today,
        "delta": snap.delta,
        "completedTaskIds": snap.completed_task_ids,
        **options.audit_flags(),
    }


# =====================================================
# Commit + daily aggregate
# =====================================================
def _base_daily_row(snap: ProgressSnapshot, now: datetime) -> Dict[str, Any]:
    return {
        "user_id": snap.user_id,
        "date": snap.day,
        "user_distance": snap.completed_today,
        "shadow_distance": snap.target_today,
        "lead": snap.delta,
        "user_speed_avg": None,
        "shadow_speed_target": snap.target_today,
        "updated_at": to_iso(now),
    }


def _extended_daily_row(store, snap: ProgressSnapshot, now: datetime) -> Dict[str, Any]:
    metrics = compute_schedule_metrics(
        tasks=store.list_user_tasks(snap.user_id),
        events=store.list_events(snap.user_id),
        completion_rows=snap.completion_rows,
        own_task_ids=snap.completed_task_ids,
        tz=snap.tz,
        day=snap.day,
        now=now,
    )

    now_iso = to_iso(now)
    try:
        store.upsert_shadow_passes(
            [
                {"user_id": snap.user_id, "task_id": task_id, "date": snap.day, "expected_at": now_iso}
                for task_id in metrics.passed_task_ids
            ]
        )
    except StoreError as e:
        logger.warning(f"[ShadowRun] shadow_passes upsert failed for {snap.user_id}: {e}")
        store.insert_dry_run_log(
            snap.user_id,
            "pace_adapt",
            {"kind": "shadow_passes_upsert_error", "message": e.message},
        )

    return {
        "user_id": snap.user_id,
        "date": snap.day,
        "user_distance": metrics.user_done_now,
        "shadow_distance": metrics.shadow_done_now,
        "lead": metrics.delta_now,
        "user_speed_avg": None,
        "shadow_speed_target": snap.target_today,
        "time_saved_minutes": metrics.time_saved_minutes,
        "pace_consistency": metrics.pace_consistency,
        "delta_now": metrics.delta_now,
        "user_speed_now": metrics.user_speed_now,
        "shadow_speed_now": metrics.shadow_speed_now,
        "last_computed_at": now_iso,
        "updated_at": now_iso,
    }


def _client_extras(extra: Dict[str, Any]) -> Dict[str, Any]:
    """Caller-supplied payload keys, minus the audit fields the server owns."""
    return {k: v for k, v in extra.items() if k not in SERVER_PAYLOAD_KEYS}


def persist_commit(
    store, snap: ProgressSnapshot, options: RunOptions, now: datetime
) -> Dict[str, Any]:
    """
    Idempotent write of the day's outcome, keyed (user_id, day), plus the
    daily aggregate row keyed (user_id, date). Runs before any gating so the
    audit/chart data always reflects the latest computation.
    """
    commit = {
        "user_id": snap.user_id,
        "day": snap.day,
        "delta": snap.delta,
        "target_today": snap.target_today,
        "completed_today": snap.completed_today,
        "decision_kind": snap.decision_kind.value,
        "payload": {
            **_client_extras(options.extra_payload),
            "tz": snap.tz,
            "completedTaskIds": snap.completed_task_ids,
            **options.audit_flags(),
        },
    }
    store.upsert_commit(commit)

    if options.extended_metrics:
        daily = _extended_daily_row(store, snap, now)
    else:
        daily = _base_daily_row(snap, now)
    store.upsert_daily(daily)

    store.insert_dry_run_log(snap.user_id, "pace_adapt", commit)
    return commit


# =====================================================
# Pacing cycle
# =====================================================
def run_pacing_cycle(
    store,
    user_id: str,
    *,
    clock: Clock = utc_now,
    options: Optional[RunOptions] = None,
    service_store=None,
    notifier: Notifier = send_nudge_push,
) -> PacingOutcome:
    """
    Run one pacing cycle for a user.

    `store` performs the user's own reads/writes (user-scoped for interactive
    calls, service-level for batch/cron). `service_store` is used for
    user_messages and push targets, which live outside the user's RLS scope;
    it defaults to `store`.
    """
    options = options or RunOptions()
    service_store = service_store or store

    cfg = get_shadow_config(store, user_id)
    if not cfg.enabled_race:
        return PacingOutcome(user_id=user_id, skipped_reason="race_disabled")

    tz = resolve_user_timezone(store, user_id)
    now = clock()
    snap = compute_snapshot(store, user_id, cfg, tz, now)

    store.insert_dry_run_log(user_id, "race_update", _race_update_payload(snap, options))
    commit = persist_commit(store, snap, options, now)
    outcome = PacingOutcome(user_id=user_id, snapshot=snap, commit=commit)

    if snap.decision_kind == DecisionKind.NOOP:
        return outcome

    outcome.gate = gate_and_send(
        service_store,
        user_id=user_id,
        day=snap.day,
        tz=tz,
        cfg=cfg,
        decision_kind=snap.decision_kind,
        delta=snap.delta,
        target_today=snap.target_today,
        completed_today=snap.completed_today,
        now=now,
    )

    if outcome.nudged:
        track_event(
            user_id,
            "shadow_nudge_sent",
            {"decision_kind": snap.decision_kind.value, "delta": snap.delta, **options.audit_flags()},
        )
    if outcome.nudged and options.send_push:
        outcome.push = notifier(
            service_store, user_id, outcome.gate.title, outcome.gate.body
        )

    logger.info(
        f"[ShadowRun] {user_id} {snap.day}: {snap.decision_kind.value} "
        f"(done {snap.completed_today}/{snap.target_today}), nudged={outcome.nudged}"
    )
    return outcome


def run_today_all(
    store,
    *,
    clock: Clock = utc_now,
    cron: bool = False,
    notifier: Notifier = send_nudge_push,
) -> Dict[str, Any]:
    """
    Pacing cycle for every user with enabled_race, sequentially.

    A user's failure is captured in that user's entry and never aborts the
    batch; callers must inspect each entry's `ok`.
    """
    user_ids = store.list_enabled_race_user_ids()
    options = RunOptions(batch=True, cron=cron, extended_metrics=cron)
    results: List[Dict[str, Any]] = []

    for user_id in user_ids:
        try:
            outcome = run_pacing_cycle(
                store, user_id, clock=clock, options=options, notifier=notifier
            )
            entry = outcome.to_response()
            entry["ok"] = True
            if outcome.skipped_reason:
                entry["reason"] = outcome.skipped_reason
            results.append({"user_id": user_id, **entry})
        except Exception as e:
            logger.warning(f"[ShadowBatch] Pacing cycle failed for {user_id}: {e}")
            results.append({"user_id": user_id, "ok": False, "error": str(e) or "failed"})

    failed = sum(1 for r in results if not r["ok"])
    logger.info(f"[ShadowBatch] Processed {len(user_ids)} users ({failed} failed, cron={cron})")
    track_event(
        SERVER_DISTINCT_ID,
        "shadow_batch_completed",
        {"total": len(user_ids), "failed": failed, "cron": cron},
    )
    return {"ok": True, "total": len(user_ids), "results": results}


# =====================================================
# Single-user helpers (commit only, preview, nudge from commit)
# =====================================================
def commit_today(
    store,
    user_id: str,
    *,
    clock: Clock = utc_now,
    extra_payload: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Recompute and commit today's progress without gating or nudging."""
    cfg = get_shadow_config(store, user_id)
    tz = resolve_user_timezone(store, user_id)
    now = clock()
    snap = compute_snapshot(store, user_id, cfg, tz, now)
    return persist_commit(store, snap, RunOptions(extra_payload=extra_payload or {}), now)


def get_today_commit(store, user_id: str, *, clock: Clock = utc_now) -> Dict[str, Any]:
    tz = resolve_user_timezone(store, user_id)
    day = today_in_tz(tz, clock())
    return {"commit": store.get_commit(user_id, day), "tz": tz, "day": day}


def preview_delta(store, user_id: str, *, clock: Clock = utc_now) -> Dict[str, Any]:
    """Today's delta without committing; logged as a race_update."""
    cfg = get_shadow_config(store, user_id)
    tz = resolve_user_timezone(store, user_id)
    snap = compute_snapshot(store, user_id, cfg, tz, clock())

    payload = {
        "tz": snap.tz,
        "today": snap.day,
        "completed_today": snap.completed_today,
        "target_today": snap.target_today,
        "delta": snap.delta,
        "completed_task_ids": snap.completed_task_ids,
    }
    store.insert_dry_run_log(user_id, "race_update", payload)
    return payload


def nudge_from_commit(
    store,
    user_id: str,
    *,
    clock: Clock = utc_now,
    service_store=None,
    notifier: Notifier = send_nudge_push,
) -> Dict[str, Any]:
    """Gate and send a nudge for today's already-stored commit."""
    service_store = service_store or store
    cfg = get_shadow_config(store, user_id)
    tz = resolve_user_timezone(store, user_id)
    now = clock()
    day = today_in_tz(tz, now)

    commit = store.get_commit(user_id, day)
    if not commit:
        return {"ok": False, "reason": "no_commit"}
    if commit.get("decision_kind") == DecisionKind.NOOP.value:
        return {"ok": False, "reason": "noop"}

    gate = gate_and_send(
        service_store,
        user_id=user_id,
        day=day,
        tz=tz,
        cfg=cfg,
        decision_kind=DecisionKind(commit["decision_kind"]),
        delta=int(commit.get("delta") or 0),
        target_today=int(commit.get("target_today") or 0),
        completed_today=int(commit.get("completed_today") or 0),
        now=now,
    )
    if not gate.admitted:
        return {"ok": False, "reason": gate.reason}

    track_event(user_id, "shadow_nudge_sent", {"decision_kind": commit["decision_kind"], "source": "commit"})
    notifier(service_store, user_id, gate.title, gate.body)
    return {"ok": True, "message_id": gate.message_id, "title": gate.title, "body": gate.body}
