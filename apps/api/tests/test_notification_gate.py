"""Tests for the nudge rate-limit gate."""

from datetime import datetime, timedelta, timezone

from app.services.notification_gate import (
    REASON_DAILY,
    REASON_NOOP,
    REASON_SPACING,
    evaluate_gate,
    gate_and_send,
)
from app.services.pace_engine import DecisionKind
from app.services.shadow_config_service import ShadowConfig

DAY = "2025-03-10"
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _messages(*ages_in_seconds):
    return [
        {"id": str(i), "created_at": (NOW - timedelta(seconds=age)).isoformat()}
        for i, age in enumerate(ages_in_seconds)
    ]


def _send(store, cfg, now=NOW, tz="UTC", kind=DecisionKind.SLOWDOWN):
    return gate_and_send(
        store,
        user_id="u1",
        day=DAY,
        tz=tz,
        cfg=cfg,
        decision_kind=kind,
        delta=-2,
        target_today=3,
        completed_today=1,
        now=now,
    )


def test_empty_day_is_admitted():
    assert evaluate_gate([], ShadowConfig(), NOW) is None


def test_daily_cap_checked_before_spacing():
    cfg = ShadowConfig(max_notifications_per_day=2, min_seconds_between_notifications=900)
    assert evaluate_gate(_messages(5000, 10), cfg, NOW) == REASON_DAILY


def test_spacing_window():
    cfg = ShadowConfig(min_seconds_between_notifications=900)
    assert evaluate_gate(_messages(500), cfg, NOW) == REASON_SPACING
    assert evaluate_gate(_messages(900), cfg, NOW) is None
    assert evaluate_gate(_messages(2000, 1000), cfg, NOW) is None


def test_cap_of_two_across_runs(store):
    cfg = ShadowConfig(max_notifications_per_day=2, min_seconds_between_notifications=60)

    first = _send(store, cfg, now=NOW)
    second = _send(store, cfg, now=NOW + timedelta(seconds=120))
    third = _send(store, cfg, now=NOW + timedelta(seconds=600))

    assert first.admitted and second.admitted
    assert third.admitted is False
    assert third.reason == REASON_DAILY
    assert len(store.messages) == 2


def test_message_500s_ago_blocks_with_900s_spacing(store):
    store.add_message("u1", NOW - timedelta(seconds=500))

    result = _send(store, ShadowConfig(min_seconds_between_notifications=900))

    assert result.admitted is False
    assert result.reason == REASON_SPACING
    assert len(store.messages) == 1


def test_window_starts_at_local_midnight(store):
    # Local midnight in Kolkata for 2025-03-10 is 2025-03-09T18:30Z
    store.add_message("u1", datetime(2025, 3, 9, 18, 0, tzinfo=timezone.utc))
    cfg = ShadowConfig(max_notifications_per_day=1)

    admitted = _send(store, cfg, tz="Asia/Kolkata")
    assert admitted.admitted is True

    store.messages.clear()
    store.add_message("u1", datetime(2025, 3, 9, 19, 0, tzinfo=timezone.utc))
    blocked = _send(store, cfg, tz="Asia/Kolkata")
    assert blocked.reason == REASON_DAILY


def test_noop_is_never_sent(store):
    result = _send(store, ShadowConfig(), kind=DecisionKind.NOOP)
    assert result.admitted is False
    assert result.reason == REASON_NOOP
    assert store.messages == []


def test_admitted_message_contents(store):
    result = _send(store, ShadowConfig())

    assert result.admitted is True
    assert result.title == "It's okay to slow down"
    assert result.body == "You are behind by 2. Try a small win to recover momentum."
    assert result.message_id == store.messages[0]["id"]
    assert store.messages[0]["idempotency_key"] == f"u1:{DAY}:1"


def test_racing_insert_of_same_key_is_suppressed(store, monkeypatch):
    # Both runs read an empty day; the first insert wins the key
    monkeypatch.setattr(store, "list_messages_since", lambda user_id, since: [])
    cfg = ShadowConfig()

    winner = _send(store, cfg)
    loser = _send(store, cfg)

    assert winner.admitted is True
    assert loser.admitted is False
    assert loser.reason == REASON_SPACING
    assert len(store.messages) == 1
