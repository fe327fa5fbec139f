"""
Pytest configuration and fixtures for the shadow pacing API tests.

Most tests run against InMemoryShadowStore, an in-memory implementation of
the ShadowStore port, with a fixed clock. Endpoint tests use the FastAPI
TestClient with the store/clock providers overridden.

Integration tests require Supabase to be configured (SUPABASE_URL,
SUPABASE_SERVICE_KEY) and are skipped otherwise.
"""

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, Iterable, List, Optional

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.core.config import settings
from app.core.dependencies import get_clock, get_service_store, get_user_store
from app.core.exceptions import StoreError
from app.services.day_bucketing import to_iso
from main import app

TEST_SECRET_KEY = "test-secret-key"
TEST_CRON_SECRET = "test-cron-secret"


def _supabase_configured() -> bool:
    """Check if Supabase is configured for integration tests."""
    return bool(os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"))


requires_supabase = pytest.mark.skipif(
    not _supabase_configured(),
    reason="SUPABASE_URL and SUPABASE_SERVICE_KEY required for integration tests",
)


class FixedClock:
    """Callable clock frozen at `now` until advanced."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class InMemoryShadowStore:
    """Same surface as ShadowStore, backed by dicts and lists."""

    def __init__(self, clock: Optional[FixedClock] = None):
        self.clock = clock or FixedClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))
        self.config_rows: List[Dict[str, Any]] = []
        self.timezones: Dict[str, str] = {}
        self.sys_admins = set()
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self.completions: List[Dict[str, Any]] = []
        self.events: List[Dict[str, Any]] = []
        self.commits: Dict[tuple, Dict[str, Any]] = {}
        self.daily: Dict[tuple, Dict[str, Any]] = {}
        self.shadow_passes: Dict[tuple, Dict[str, Any]] = {}
        self.dry_run_logs: List[Dict[str, Any]] = []
        self.messages: List[Dict[str, Any]] = []
        self.profiles: List[Dict[str, Any]] = []
        self.shadow_task_rows: List[Dict[str, Any]] = []
        self.instances: Dict[tuple, Dict[str, Any]] = {}
        self.push_subscriptions: List[Dict[str, Any]] = []
        self.fcm_tokens: List[Dict[str, Any]] = []
        # (operation, key) pairs that raise StoreError
        self.failures = set()

    # ---------------------------------------------
    # seeding helpers
    # ---------------------------------------------
    def add_task(self, user_id: str, task_id: Optional[str] = None, **fields) -> str:
        task_id = task_id or str(uuid.uuid4())
        self.tasks[task_id] = {
            "id": task_id,
            "user_id": user_id,
            "owner_type": "user",
            "active": True,
            "title": fields.pop("title", f"Task {task_id}"),
            "time_anchor": None,
            "order_hint": None,
            "created_at": "2025-01-01T00:00:00+00:00",
            **fields,
        }
        return task_id

    def complete(self, user_id: str, task_id: str, day: str, created_at: Optional[str] = None):
        self.completions.append(
            {
                "user_id": user_id,
                "task_id": task_id,
                "completed_on": day,
                "created_at": created_at or f"{day}T08:00:00+00:00",
            }
        )

    def add_message(self, user_id: str, created_at: datetime):
        self.messages.append(
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "title": "seed",
                "body": "seed",
                "idempotency_key": None,
                "created_at": to_iso(created_at),
            }
        )

    def _maybe_fail(self, operation: str, key: Any = None) -> None:
        if (operation, key) in self.failures or (operation, None) in self.failures:
            raise StoreError(f"{operation} failed: injected")

    # ---------------------------------------------
    # config / user context
    # ---------------------------------------------
    def fetch_shadow_config_row(self, user_id):
        self._maybe_fail("fetch_shadow_config_row", user_id)
        own = [r for r in self.config_rows if r.get("user_id") == user_id]
        if own:
            return own[0]
        glob = [r for r in self.config_rows if r.get("user_id") is None]
        return glob[0] if glob else None

    def list_enabled_race_user_ids(self):
        self._maybe_fail("list_enabled_race_user_ids")
        return [
            str(r["user_id"])
            for r in self.config_rows
            if r.get("user_id") and r.get("enabled_race") is True
        ]

    def fetch_timezone(self, user_id):
        self._maybe_fail("fetch_timezone", user_id)
        return self.timezones.get(user_id)

    def is_sys_admin(self, user_id):
        return user_id in self.sys_admins

    # ---------------------------------------------
    # tasks / completions
    # ---------------------------------------------
    def list_completions(self, user_id, day):
        self._maybe_fail("list_completions", user_id)
        return [
            dict(c) for c in self.completions if c["user_id"] == user_id and c["completed_on"] == day
        ]

    def fetch_tasks_by_ids(self, task_ids: Iterable[str]):
        ids = set(task_ids)
        return [
            {"id": t["id"], "owner_type": t.get("owner_type")}
            for tid, t in self.tasks.items()
            if tid in ids
        ]

    def list_user_tasks(self, user_id):
        return [dict(t) for t in self.tasks.values() if t["user_id"] == user_id]

    def list_events(self, user_id, limit=100):
        return [dict(e) for e in self.events if e.get("user_id") == user_id][:limit]

    # ---------------------------------------------
    # commits / aggregates / audit
    # ---------------------------------------------
    def upsert_commit(self, commit):
        self._maybe_fail("upsert_commit", commit["user_id"])
        self.commits[(commit["user_id"], commit["day"])] = dict(commit)

    def get_commit(self, user_id, day):
        row = self.commits.get((user_id, day))
        return dict(row) if row else None

    def upsert_daily(self, row):
        self.daily[(row["user_id"], row["date"])] = dict(row)

    def upsert_shadow_passes(self, rows):
        if not rows:
            return
        self._maybe_fail("upsert_shadow_passes", rows[0]["user_id"])
        for row in rows:
            self.shadow_passes[(row["user_id"], row["task_id"], row["date"])] = dict(row)

    def insert_dry_run_log(self, user_id, kind, payload):
        self.dry_run_logs.append({"user_id": user_id, "kind": kind, "payload": payload})

    # ---------------------------------------------
    # messages
    # ---------------------------------------------
    def list_messages_since(self, user_id, since_iso):
        since = datetime.fromisoformat(since_iso)
        return [
            {"id": m["id"], "created_at": m["created_at"]}
            for m in self.messages
            if m["user_id"] == user_id and datetime.fromisoformat(m["created_at"]) >= since
        ]

    def insert_message(self, message):
        key = message.get("idempotency_key")
        if key and any(m.get("idempotency_key") == key for m in self.messages):
            return None
        row = {"id": str(uuid.uuid4()), "created_at": to_iso(self.clock()), **message}
        self.messages.append(row)
        return dict(row)

    # ---------------------------------------------
    # shadow routine
    # ---------------------------------------------
    def add_shadow_profile(self, user_id: str) -> Dict[str, Any]:
        profile = {"id": f"profile-{user_id}", "user_id": user_id}
        self.profiles.append(profile)
        return profile

    def mirror_task(self, profile: Dict[str, Any], task_id: str, status: str = "active") -> str:
        row_id = f"st-{task_id}"
        self.shadow_task_rows.append(
            {"id": row_id, "shadow_id": profile["id"], "task_id": task_id, "status": status}
        )
        return row_id

    def list_shadow_profiles(self, limit=100000):
        return [dict(p) for p in self.profiles][:limit]

    def fetch_shadow_profile(self, user_id):
        for p in self.profiles:
            if p["user_id"] == user_id:
                return dict(p)
        return None

    def list_shadow_tasks(self, shadow_id):
        self._maybe_fail("list_shadow_tasks", shadow_id)
        rows = []
        for r in self.shadow_task_rows:
            task = self.tasks.get(r["task_id"])
            if r["shadow_id"] != shadow_id or task is None:
                continue
            rows.append({**r, "tasks": dict(task)})
        return rows

    def list_instances(self, day, shadow_task_ids):
        ids = set(shadow_task_ids)
        return [
            {"id": i["id"], "shadow_task_id": i["shadow_task_id"]}
            for (stid, d), i in self.instances.items()
            if d == day and stid in ids
        ]

    def insert_instances(self, rows):
        inserted = []
        for row in rows:
            key = (row["shadow_task_id"], row["planned_date_local"])
            if key in self.instances:
                continue
            stored = {"id": str(uuid.uuid4()), **row}
            self.instances[key] = stored
            inserted.append(dict(stored))
        return inserted

    # ---------------------------------------------
    # push targets
    # ---------------------------------------------
    def list_push_subscriptions(self, user_id):
        return [dict(s) for s in self.push_subscriptions if s["user_id"] == user_id]

    def delete_push_subscription(self, endpoint):
        self._maybe_fail("delete_push_subscription", endpoint)
        self.push_subscriptions = [s for s in self.push_subscriptions if s["endpoint"] != endpoint]

    def list_fcm_tokens(self, user_id):
        return [t["token"] for t in self.fcm_tokens if t["user_id"] == user_id]

    def delete_fcm_token(self, token):
        self._maybe_fail("delete_fcm_token", token)
        self.fcm_tokens = [t for t in self.fcm_tokens if t["token"] != token]


def make_token(user_id: str, token_type: str = "access", secret: str = TEST_SECRET_KEY) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {
            "sub": user_id,
            "aud": "authenticated",
            "role": "authenticated",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(hours=1)).timestamp()),
            "user_id": user_id,
            "type": token_type,
        },
        secret,
        algorithm="HS256",
    )


@pytest.fixture
def clock() -> FixedClock:
    # 12:00 UTC on 2025-03-10 is 17:30 in Asia/Kolkata, 08:00 in New York
    return FixedClock(datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock: FixedClock) -> InMemoryShadowStore:
    return InMemoryShadowStore(clock)


@pytest.fixture
def test_settings(monkeypatch):
    monkeypatch.setattr(settings, "SECRET_KEY", TEST_SECRET_KEY)
    monkeypatch.setattr(settings, "ALGORITHM", "HS256")
    monkeypatch.setattr(settings, "CRON_SECRET", TEST_CRON_SECRET)
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    monkeypatch.setattr(settings, "DEFAULT_TIMEZONE", "Asia/Kolkata")
    monkeypatch.setattr(settings, "VAPID_PUBLIC_KEY", "")
    monkeypatch.setattr(settings, "VAPID_PRIVATE_KEY", "")
    monkeypatch.setattr(settings, "FCM_SERVICE_ACCOUNT_JSON", "")
    monkeypatch.setattr(settings, "POSTHOG_API_KEY", "")
    return settings


@pytest.fixture
def client(test_settings, store, clock) -> Generator[TestClient, None, None]:
    """Test client with the store and clock providers overridden."""
    app.dependency_overrides[get_user_store] = lambda: store
    app.dependency_overrides[get_service_store] = lambda: store
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        with TestClient(app, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def api_base() -> str:
    """Base path for API v1 endpoints."""
    return "/api/v1"


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def auth_headers(test_settings, user_id) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def bearer(test_settings):
    """Build Authorization headers for any user id."""

    def _headers(user_id: str, token_type: str = "access") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, token_type)}"}

    return _headers


@pytest.fixture
def cron_headers() -> dict:
    return {"x-cron-secret": TEST_CRON_SECRET}
