"""
Pace decision engine.

Pure functions, no I/O: turn today's completion count and the shadow target
into a signed delta and a bounded decision, and render the nudge text for a
decision.

    delta >= 2   -> boost
    delta <= -2  -> slowdown
    |delta| == 1 -> nudge
    delta == 0   -> noop
"""

import math
from enum import Enum
from typing import Tuple

from app.services.shadow_config_service import ShadowConfig

BOOST_THRESHOLD = 2
NUDGE_BAND = 1


class DecisionKind(str, Enum):
    BOOST = "boost"
    SLOWDOWN = "slowdown"
    NUDGE = "nudge"
    NOOP = "noop"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def target_for(cfg: ShadowConfig) -> int:
    """Today's integer target: round(shadow_speed_target ?? base_speed), floored at 0."""
    return max(0, round_half_up(float(cfg.target_speed)))


def decide(completed: int, target: int) -> Tuple[int, DecisionKind]:
    delta = int(completed) - int(target)

    if delta >= BOOST_THRESHOLD:
        return delta, DecisionKind.BOOST
    if delta <= -BOOST_THRESHOLD:
        return delta, DecisionKind.SLOWDOWN
    if abs(delta) == NUDGE_BAND:
        return delta, DecisionKind.NUDGE
    return delta, DecisionKind.NOOP


def compose_message(
    decision_kind: DecisionKind, delta: int, target: int, completed: int
) -> Tuple[str, str]:
    """Deterministic (title, body) for a decision. Text is a client contract."""
    direction = "behind" if delta < 0 else "ahead"
    magnitude = abs(int(delta or 0))

    kind = DecisionKind(decision_kind)
    if kind == DecisionKind.BOOST:
        return (
            "On a roll!",
            f"You are ahead by {magnitude}. Consider tackling a stretch task.",
        )
    if kind == DecisionKind.SLOWDOWN:
        return (
            "It's okay to slow down",
            f"You are behind by {magnitude}. Try a small win to recover momentum.",
        )
    if kind == DecisionKind.NUDGE:
        if delta < 0:
            return "One more to go", "Finish one quick task to hit your target."
        return "Nice pace", "Optional extra if you feel good."

    return (
        "Keep pace today",
        f"Target {target}, done {completed}. You are {direction} by {magnitude}.",
    )
