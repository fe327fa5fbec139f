"""
Shadow store port.

Thin typed wrapper over the Supabase tables the pacing core reads and writes.
Every PostgREST/network failure surfaces as StoreError so callers deal with a
single error type. The access level the client was built with is kept on the
store so the RLS boundary stays visible at every call site.

Tables:
- shadow_config            per-user (or global, user_id null) pacing config
- user_preferences         timezone
- tasks / task_completions the user's own tasks and their completions
- shadow_progress_commits  unique (user_id, day)
- shadow_progress_daily    unique (user_id, date)
- shadow_dry_run_logs      append-only audit
- user_messages            nudges, unique idempotency_key
- shadow_profile / shadow_tasks / shadow_task_instances
- shadow_passes            unique (user_id, task_id, date)
- events                   scheduled event overrides
- push_subscriptions / fcm_tokens
- app_users                is_sys_admin
"""

from typing import Any, Callable, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from app.core.database import AccessLevel, get_supabase_client
from app.core.exceptions import StoreError


class ShadowStore:
    def __init__(self, client: Client, access: AccessLevel):
        self.client = client
        self.access = access

    @classmethod
    def for_access(
        cls, access: AccessLevel, access_token: Optional[str] = None
    ) -> "ShadowStore":
        return cls(get_supabase_client(access, access_token), access)

    # -------------------------------------------------
    # helpers
    # -------------------------------------------------
    def _execute(self, operation: str, build: Callable[[], Any]) -> List[Dict[str, Any]]:
        try:
            result = build().execute()
        except APIError as e:
            raise StoreError(f"{operation} failed: {e.message}") from e
        except Exception as e:
            raise StoreError(f"{operation} failed: {e}") from e
        if result is None:
            return []
        return list(result.data or [])

    def _first(self, operation: str, build: Callable[[], Any]) -> Optional[Dict[str, Any]]:
        rows = self._execute(operation, build)
        return rows[0] if rows else None

    # -------------------------------------------------
    # config / user context
    # -------------------------------------------------
    def fetch_shadow_config_row(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = self._execute(
            "shadow_config read",
            lambda: self.client.table("shadow_config")
            .select("*")
            .or_(f"user_id.eq.{user_id},user_id.is.null")
            .limit(2),
        )
        own = [r for r in rows if r.get("user_id") == user_id]
        if own:
            return own[0]
        return rows[0] if rows else None

    def list_enabled_race_user_ids(self) -> List[str]:
        rows = self._execute(
            "shadow_config list",
            lambda: self.client.table("shadow_config")
            .select("user_id, enabled_race")
            .eq("enabled_race", True),
        )
        return [str(r["user_id"]) for r in rows if r.get("user_id")]

    def fetch_timezone(self, user_id: str) -> Optional[str]:
        row = self._first(
            "user_preferences read",
            lambda: self.client.table("user_preferences")
            .select("timezone")
            .eq("user_id", user_id)
            .limit(1),
        )
        return str(row["timezone"]) if row and row.get("timezone") else None

    def is_sys_admin(self, user_id: str) -> bool:
        row = self._first(
            "app_users read",
            lambda: self.client.table("app_users")
            .select("is_sys_admin")
            .eq("id", user_id)
            .limit(1),
        )
        return bool(row and row.get("is_sys_admin"))

    # -------------------------------------------------
    # tasks / completions
    # -------------------------------------------------
    def list_completions(self, user_id: str, day: str) -> List[Dict[str, Any]]:
        return self._execute(
            "task_completions read",
            lambda: self.client.table("task_completions")
            .select("task_id, created_at, completed_on")
            .eq("user_id", user_id)
            .eq("completed_on", day),
        )

    def fetch_tasks_by_ids(self, task_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(task_ids)
        if not ids:
            return []
        return self._execute(
            "tasks read",
            lambda: self.client.table("tasks").select("id, owner_type").in_("id", ids),
        )

    def list_user_tasks(self, user_id: str) -> List[Dict[str, Any]]:
        return self._execute(
            "tasks list",
            lambda: self.client.table("tasks")
            .select("id, title, time_anchor, order_hint, owner_type, created_at, active")
            .eq("user_id", user_id)
            .order("created_at"),
        )

    def list_events(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        return self._execute(
            "events list",
            lambda: self.client.table("events")
            .select("due_start, due_end, routine_item_id, user_id")
            .eq("user_id", user_id)
            .order("due_start")
            .limit(limit),
        )

    # -------------------------------------------------
    # progress commits / aggregates / audit
    # -------------------------------------------------
    def upsert_commit(self, commit: Dict[str, Any]) -> None:
        self._execute(
            "shadow_progress_commits upsert",
            lambda: self.client.table("shadow_progress_commits").upsert(
                commit, on_conflict="user_id,day"
            ),
        )

    def get_commit(self, user_id: str, day: str) -> Optional[Dict[str, Any]]:
        return self._first(
            "shadow_progress_commits read",
            lambda: self.client.table("shadow_progress_commits")
            .select(
                "id, user_id, day, delta, target_today, completed_today, "
                "decision_kind, payload, created_at"
            )
            .eq("user_id", user_id)
            .eq("day", day)
            .limit(1),
        )

    def upsert_daily(self, row: Dict[str, Any]) -> None:
        self._execute(
            "shadow_progress_daily upsert",
            lambda: self.client.table("shadow_progress_daily").upsert(
                row, on_conflict="user_id,date"
            ),
        )

    def upsert_shadow_passes(self, rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return
        self._execute(
            "shadow_passes upsert",
            lambda: self.client.table("shadow_passes").upsert(
                rows, on_conflict="user_id,task_id,date"
            ),
        )

    def insert_dry_run_log(self, user_id: str, kind: str, payload: Dict[str, Any]) -> None:
        self._execute(
            "shadow_dry_run_logs insert",
            lambda: self.client.table("shadow_dry_run_logs").insert(
                {"user_id": user_id, "kind": kind, "payload": payload}
            ),
        )

    # -------------------------------------------------
    # messages (nudges)
    # -------------------------------------------------
    def list_messages_since(self, user_id: str, since_iso: str) -> List[Dict[str, Any]]:
        return self._execute(
            "user_messages read",
            lambda: self.client.table("user_messages")
            .select("id, created_at")
            .eq("user_id", user_id)
            .gte("created_at", since_iso),
        )

    def insert_message(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Insert-or-ignore on idempotency_key. Returns the stored row, or None
        when a concurrent run already wrote the same key.
        """
        return self._first(
            "user_messages insert",
            lambda: self.client.table("user_messages").upsert(
                message, on_conflict="idempotency_key", ignore_duplicates=True
            ),
        )

    # -------------------------------------------------
    # shadow routine
    # -------------------------------------------------
    def list_shadow_profiles(self, limit: int = 100000) -> List[Dict[str, Any]]:
        return self._execute(
            "shadow_profile list",
            lambda: self.client.table("shadow_profile").select("id, user_id").limit(limit),
        )

    def fetch_shadow_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._first(
            "shadow_profile read",
            lambda: self.client.table("shadow_profile")
            .select("id, user_id")
            .eq("user_id", user_id)
            .limit(1),
        )

    def list_shadow_tasks(self, shadow_id: str) -> List[Dict[str, Any]]:
        return self._execute(
            "shadow_tasks list",
            lambda: self.client.table("shadow_tasks")
            .select(
                "id, task_id, status, "
                "tasks!inner(id, title, time_anchor, order_hint, active, created_at)"
            )
            .eq("shadow_id", shadow_id),
        )

    def list_instances(self, day: str, shadow_task_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(shadow_task_ids)
        if not ids:
            return []
        return self._execute(
            "shadow_task_instances read",
            lambda: self.client.table("shadow_task_instances")
            .select("id, shadow_task_id")
            .eq("planned_date_local", day)
            .in_("shadow_task_id", ids),
        )

    def insert_instances(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert-or-ignore on (shadow_task_id, planned_date_local)."""
        if not rows:
            return []
        return self._execute(
            "shadow_task_instances insert",
            lambda: self.client.table("shadow_task_instances").upsert(
                rows,
                on_conflict="shadow_task_id,planned_date_local",
                ignore_duplicates=True,
            ),
        )

    # -------------------------------------------------
    # push delivery targets
    # -------------------------------------------------
    def list_push_subscriptions(self, user_id: str) -> List[Dict[str, Any]]:
        return self._execute(
            "push_subscriptions read",
            lambda: self.client.table("push_subscriptions")
            .select("endpoint, p256dh, auth, expiration_time")
            .eq("user_id", user_id)
            .order("created_at", desc=True),
        )

    def delete_push_subscription(self, endpoint: str) -> None:
        self._execute(
            "push_subscriptions delete",
            lambda: self.client.table("push_subscriptions").delete().eq("endpoint", endpoint),
        )

    def list_fcm_tokens(self, user_id: str) -> List[str]:
        rows = self._execute(
            "fcm_tokens read",
            lambda: self.client.table("fcm_tokens").select("token").eq("user_id", user_id),
        )
        return [str(r["token"]) for r in rows if r.get("token")]

    def delete_fcm_token(self, token: str) -> None:
        self._execute(
            "fcm_tokens delete",
            lambda: self.client.table("fcm_tokens").delete().eq("token", token),
        )
