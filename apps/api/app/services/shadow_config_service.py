"""
Shadow configuration resolver.

Reads the user's shadow_config row (falling back to the global row where
user_id is null) and fills every null column from DEFAULTS. Read-only: rows
are created by the setup flow, never here.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ShadowConfig(BaseModel):
    base_speed: float = 3
    min_speed: float = 1
    max_speed: float = 10
    adapt_up_factor: float = 1.2
    adapt_down_factor: float = 0.85
    smoothing_alpha: float = 0.25
    recovery_grace_days: int = 1
    carryover_cap: int = 10
    shadow_speed_target: Optional[float] = None
    enabled_race: bool = True
    ghost_mode_ai: bool = False
    max_notifications_per_day: int = 10
    min_seconds_between_notifications: int = 900

    @property
    def target_speed(self) -> float:
        """Explicit shadow target if set, otherwise the base speed."""
        if self.shadow_speed_target is not None:
            return self.shadow_speed_target
        return self.base_speed


DEFAULTS = ShadowConfig()


def config_from_row(row: Optional[Dict[str, Any]]) -> ShadowConfig:
    if not row:
        return DEFAULTS.model_copy()

    values: Dict[str, Any] = {}
    for field in ShadowConfig.model_fields:
        if field not in row or row[field] is None:
            continue
        values[field] = row[field]

    # A cap of 0 falls back to the default
    for cap in ("max_notifications_per_day", "min_seconds_between_notifications"):
        if not values.get(cap):
            values.pop(cap, None)

    return ShadowConfig(**values)


def get_shadow_config(store, user_id: str) -> ShadowConfig:
    """
    Resolve the effective ShadowConfig for a user.

    Store errors propagate: single-user callers turn them into a 500, batch
    callers record them against that user and move on.
    """
    return config_from_row(store.fetch_shadow_config_row(user_id))
