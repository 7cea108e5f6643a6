"""Decay verdict models — the closed result set of a decay tick.

Every evaluation yields exactly one of five verdicts:
- Continue: score adjusted (recovery or gap decay), device keeps going.
- ContinueWithReset: activity streak reached the reset threshold.
- InactivityWarning: device is past the warning threshold.
- RemoveDevice: secondary device inactive past the critical threshold.
- PromoteSecondary: primary device inactive past the critical threshold.

Callers dispatch on ``kind`` and must handle all five.
Verdicts are transient; persisting them is the caller's job.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union


class VerdictKind(str, enum.Enum):
    CONTINUE = "continue"
    CONTINUE_WITH_RESET = "continue_with_reset"
    WARNING = "warning"
    REMOVE_DEVICE = "remove_device"
    PROMOTE_SECONDARY = "promote_secondary"


class DecaySeverity(str, enum.Enum):
    """How large a single score drop was."""
    NONE = "none"
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Continue:
    new_score: int
    consecutive_active_periods: int
    decay_applied: int
    recovery_gained: int
    elapsed_periods: int = 0

    kind = VerdictKind.CONTINUE


@dataclass(frozen=True)
class ContinueWithReset:
    """Streak complete; the caller resets the active-period counter to 0."""
    new_score: int
    message: str
    elapsed_periods: int = 0

    kind = VerdictKind.CONTINUE_WITH_RESET


@dataclass(frozen=True)
class InactivityWarning:
    new_score: int
    message: str
    periods_remaining: int
    decay_applied: int = 0
    elapsed_periods: int = 0

    kind = VerdictKind.WARNING


@dataclass(frozen=True)
class RemoveDevice:
    device_id: str
    reason: str
    elapsed_periods: int = 0

    kind = VerdictKind.REMOVE_DEVICE


@dataclass(frozen=True)
class PromoteSecondary:
    """The primary went stale; ``device_id`` is the old primary."""
    device_id: str
    reason: str
    elapsed_periods: int = 0

    kind = VerdictKind.PROMOTE_SECONDARY


DecayResult = Union[
    Continue, ContinueWithReset, InactivityWarning, RemoveDevice, PromoteSecondary,
]

TERMINAL_KINDS = frozenset({VerdictKind.REMOVE_DEVICE, VerdictKind.PROMOTE_SECONDARY})


def is_terminal(result: DecayResult) -> bool:
    """True if the verdict must be executed by the role coordinator."""
    return result.kind in TERMINAL_KINDS


def verdict_to_dict(result: DecayResult) -> dict:
    """Flatten a verdict into a JSON-safe dict (for events and the CLI)."""
    data = {"kind": result.kind.value, "elapsed_periods": result.elapsed_periods}
    if isinstance(result, Continue):
        data.update(
            new_score=result.new_score,
            consecutive_active_periods=result.consecutive_active_periods,
            decay_applied=result.decay_applied,
            recovery_gained=result.recovery_gained,
        )
    elif isinstance(result, ContinueWithReset):
        data.update(new_score=result.new_score, message=result.message)
    elif isinstance(result, InactivityWarning):
        data.update(
            new_score=result.new_score,
            message=result.message,
            periods_remaining=result.periods_remaining,
            decay_applied=result.decay_applied,
        )
    elif isinstance(result, (RemoveDevice, PromoteSecondary)):
        data.update(device_id=result.device_id, reason=result.reason)
    else:
        raise TypeError(f"Unknown decay verdict: {type(result).__name__}")
    return data
