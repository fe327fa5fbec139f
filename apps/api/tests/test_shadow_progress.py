"""Tests for the shadow pacing pipeline."""

from datetime import datetime, timezone

import pytest

from app.core.exceptions import StoreError
from app.services.shadow_progress_service import (
    RunOptions,
    aggregate_completions,
    commit_today,
    get_today_commit,
    nudge_from_commit,
    preview_delta,
    run_pacing_cycle,
    run_today_all,
)

DAY = "2025-03-10"


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def __call__(self, store, user_id, title, body, url="/shadow"):
        self.calls.append({"user_id": user_id, "title": title, "body": body})
        return {"web": {"sent": 0}, "fcm": {"sent": 0}}


@pytest.fixture
def notifier():
    return RecordingNotifier()


def seed_user(store, user_id, tz="UTC", **cfg):
    store.config_rows.append({"user_id": user_id, "enabled_race": True, **cfg})
    store.timezones[user_id] = tz


def complete_tasks(store, user_id, count, day=DAY):
    ids = []
    for _ in range(count):
        task_id = store.add_task(user_id)
        store.complete(user_id, task_id, day)
        ids.append(task_id)
    return ids


def test_rerun_overwrites_single_commit(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    complete_tasks(store, "u1", 3)

    first = run_pacing_cycle(store, "u1", clock=clock, notifier=notifier)
    second = run_pacing_cycle(store, "u1", clock=clock, notifier=notifier)

    assert list(store.commits) == [("u1", DAY)]
    assert first.commit == second.commit
    commit = store.commits[("u1", DAY)]
    assert commit["decision_kind"] == "noop"
    assert commit["delta"] == 0
    assert commit["completed_today"] == 3
    assert commit["target_today"] == 3


def test_duplicate_completions_count_once(store, clock, test_settings):
    seed_user(store, "u1")
    task_id = store.add_task("u1")
    store.complete("u1", task_id, DAY)
    store.complete("u1", task_id, DAY)

    ids, rows = aggregate_completions(store, "u1", DAY)
    assert ids == [task_id]
    assert len(rows) == 2


def test_shadow_owned_tasks_are_excluded(store, clock, test_settings):
    seed_user(store, "u1")
    own = store.add_task("u1")
    legacy = store.add_task("u1", owner_type=None)
    mirror = store.add_task("u1", owner_type="shadow")
    for task_id in (own, legacy, mirror):
        store.complete("u1", task_id, DAY)

    ids, _ = aggregate_completions(store, "u1", DAY)
    assert sorted(ids) == sorted([own, legacy])


def test_completions_of_deleted_tasks_are_ignored(store, test_settings):
    store.complete("u1", "gone", DAY)
    ids, _ = aggregate_completions(store, "u1", DAY)
    assert ids == []


def test_race_disabled_stops_before_commit(store, clock, notifier, test_settings):
    store.config_rows.append({"user_id": "u1", "enabled_race": False})

    outcome = run_pacing_cycle(store, "u1", clock=clock, notifier=notifier)

    assert outcome.to_response() == {"ok": False, "reason": "race_disabled"}
    assert store.commits == {}
    assert store.dry_run_logs == []


def test_noop_commits_without_message(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    complete_tasks(store, "u1", 3)

    response = run_pacing_cycle(store, "u1", clock=clock, notifier=notifier).to_response()

    assert response == {
        "ok": True,
        "decision_kind": "noop",
        "delta": 0,
        "target_today": 3,
        "completed_today": 3,
        "nudged": False,
    }
    assert store.messages == []
    assert notifier.calls == []
    assert ("u1", DAY) in store.daily


def test_nudge_is_stored_and_pushed(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    complete_tasks(store, "u1", 2)

    response = run_pacing_cycle(store, "u1", clock=clock, notifier=notifier).to_response()

    assert response["decision_kind"] == "nudge"
    assert response["delta"] == -1
    assert response["nudged"] is True
    assert response["title"] == "One more to go"
    assert len(store.messages) == 1
    assert store.messages[0]["url"] == "/shadow"
    assert store.messages[0]["idempotency_key"] == f"u1:{DAY}:1"
    assert notifier.calls == [
        {"user_id": "u1", "title": "One more to go", "body": "Finish one quick task to hit your target."}
    ]


def test_second_run_inside_spacing_is_suppressed(store, clock, notifier, test_settings):
    seed_user(store, "u1")

    run_pacing_cycle(store, "u1", clock=clock, notifier=notifier)
    clock.advance(300)
    response = run_pacing_cycle(store, "u1", clock=clock, notifier=notifier).to_response()

    assert response["ok"] is True
    assert response["nudged"] is False
    assert response["reason"] == "rate_limit_spacing"
    assert len(store.messages) == 1
    assert len(notifier.calls) == 1


def test_day_is_bucketed_in_user_timezone(store, clock, notifier, test_settings):
    seed_user(store, "u1", tz="Asia/Kolkata")
    clock.now = datetime(2025, 3, 10, 19, 0, tzinfo=timezone.utc)
    run_pacing_cycle(store, "u1", clock=clock, notifier=notifier)

    assert ("u1", "2025-03-11") in store.commits


def test_commit_payload_carries_audit_flags(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    ids = complete_tasks(store, "u1", 1)

    run_pacing_cycle(
        store,
        "u1",
        clock=clock,
        options=RunOptions(batch=True, cron=True, extra_payload={"source": "test"}),
        notifier=notifier,
    )

    payload = store.commits[("u1", DAY)]["payload"]
    assert payload == {
        "tz": "UTC",
        "completedTaskIds": ids,
        "batch": True,
        "cron": True,
        "source": "test",
    }
    kinds = [log["kind"] for log in store.dry_run_logs]
    assert kinds == ["race_update", "pace_adapt"]


def test_store_failure_propagates_in_single_user_run(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    store.failures.add(("upsert_commit", "u1"))

    with pytest.raises(StoreError):
        run_pacing_cycle(store, "u1", clock=clock, notifier=notifier)


def test_batch_isolates_failing_user(store, clock, notifier, test_settings):
    for uid in ("u1", "u2", "u3"):
        seed_user(store, uid)
    store.failures.add(("fetch_shadow_config_row", "u2"))

    result = run_today_all(store, clock=clock, notifier=notifier)

    assert result["ok"] is True
    assert result["total"] == 3
    by_user = {r["user_id"]: r for r in result["results"]}
    assert by_user["u1"]["ok"] is True
    assert by_user["u3"]["ok"] is True
    assert by_user["u2"]["ok"] is False
    assert "injected" in by_user["u2"]["error"]
    assert ("u1", DAY) in store.commits
    assert ("u3", DAY) in store.commits
    assert ("u2", DAY) not in store.commits


def test_batch_entries_carry_decision(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    complete_tasks(store, "u1", 5)

    result = run_today_all(store, clock=clock, notifier=notifier)

    entry = result["results"][0]
    assert entry["ok"] is True
    assert entry["decision_kind"] == "boost"
    assert entry["delta"] == 2
    assert entry["nudged"] is True
    assert store.commits[("u1", DAY)]["payload"]["batch"] is True


def test_cron_batch_writes_extended_metrics_and_passes(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    morning = store.add_task("u1", time_anchor="morning")
    store.add_task("u1", time_anchor="evening")
    store.add_task("u1")
    store.complete("u1", morning, DAY, created_at=f"{DAY}T08:30:00+00:00")

    run_today_all(store, clock=clock, cron=True, notifier=notifier)

    daily = store.daily[("u1", DAY)]
    assert daily["user_distance"] == 1
    assert daily["shadow_distance"] == 1
    assert daily["lead"] == 0
    assert daily["time_saved_minutes"] == 30
    assert daily["pace_consistency"] is None
    assert daily["last_computed_at"] == "2025-03-10T12:00:00+00:00"
    assert list(store.shadow_passes) == [("u1", morning, DAY)]
    assert store.commits[("u1", DAY)]["payload"]["cron"] is True


def test_shadow_pass_failure_is_logged_not_fatal(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    morning = store.add_task("u1", time_anchor="morning")
    store.complete("u1", morning, DAY)
    store.failures.add(("upsert_shadow_passes", "u1"))

    result = run_today_all(store, clock=clock, cron=True, notifier=notifier)

    assert result["results"][0]["ok"] is True
    errors = [
        log for log in store.dry_run_logs
        if log["payload"].get("kind") == "shadow_passes_upsert_error"
    ]
    assert len(errors) == 1
    assert errors[0]["kind"] == "pace_adapt"


def test_commit_today_and_read_back(store, clock, test_settings):
    seed_user(store, "u1", tz="America/New_York")
    complete_tasks(store, "u1", 1)

    commit = commit_today(store, "u1", clock=clock, extra_payload={"note": "manual"})

    assert commit["day"] == DAY
    assert commit["decision_kind"] == "slowdown"
    assert commit["payload"]["note"] == "manual"
    assert store.messages == []

    read = get_today_commit(store, "u1", clock=clock)
    assert read["tz"] == "America/New_York"
    assert read["day"] == DAY
    assert read["commit"]["delta"] == -2


def test_preview_delta_does_not_commit(store, clock, test_settings):
    seed_user(store, "u1")
    ids = complete_tasks(store, "u1", 2)

    preview = preview_delta(store, "u1", clock=clock)

    assert preview == {
        "tz": "UTC",
        "today": DAY,
        "completed_today": 2,
        "target_today": 3,
        "delta": -1,
        "completed_task_ids": ids,
    }
    assert store.commits == {}
    assert store.dry_run_logs[-1]["kind"] == "race_update"


def test_nudge_from_commit_reasons(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    assert nudge_from_commit(store, "u1", clock=clock, notifier=notifier) == {
        "ok": False,
        "reason": "no_commit",
    }

    complete_tasks(store, "u1", 3)
    commit_today(store, "u1", clock=clock)
    assert nudge_from_commit(store, "u1", clock=clock, notifier=notifier) == {
        "ok": False,
        "reason": "noop",
    }


def test_nudge_from_commit_sends_once(store, clock, notifier, test_settings):
    seed_user(store, "u1")
    commit_today(store, "u1", clock=clock)

    sent = nudge_from_commit(store, "u1", clock=clock, notifier=notifier)
    again = nudge_from_commit(store, "u1", clock=clock, notifier=notifier)

    assert sent["ok"] is True
    assert sent["title"] == "It's okay to slow down"
    assert again == {"ok": False, "reason": "rate_limit_spacing"}
    assert len(notifier.calls) == 1
