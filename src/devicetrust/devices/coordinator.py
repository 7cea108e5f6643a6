"""Device role coordinator — primary/secondary assignment per user.

Acts on the terminal verdicts of the decay engine:
- RemoveDevice: delete that device's baseline only. Siblings and the
  user's primary assignment are untouched.
- PromoteSecondary: pick the secondary with the most recent activity,
  make it primary, and relabel the stale primary as secondary. The
  demoted baseline is kept; as it is already past the critical threshold,
  its next decay tick removes it.

Invariant: after a successful promotion exactly one device holds primary.
With no secondary to promote, NoEligibleSecondary is returned and the
current primary keeps its role, so the user is never left without an
active device.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional, Union

from devicetrust.models.decay import (
    Continue,
    ContinueWithReset,
    DecayResult,
    InactivityWarning,
    PromoteSecondary,
    RemoveDevice,
)
from devicetrust.models.trust import DeviceRole, TrustBaseline
from devicetrust.persistence.store import InMemoryTrustStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NoEligibleSecondary:
    """Promotion was requested but the user has no secondary device."""
    user_id: str
    excluded_device_id: str
    reason: str = "no secondary device eligible for promotion"


@dataclass(frozen=True)
class CoordinatorOutcome:
    """What the coordinator did with a verdict."""
    device_id: str
    removed: bool = False
    new_primary_id: Optional[str] = None
    blocked: Optional[NoEligibleSecondary] = None

    @property
    def acted(self) -> bool:
        return self.removed or self.new_primary_id is not None


PromotionResult = Union[str, NoEligibleSecondary]


class DeviceRoleCoordinator:
    """Owns role assignment for a user's devices.

    Store writes are optimistic; a ConcurrencyViolation propagates to the
    caller, which re-reads and retries the whole operation. A promotion is
    written as one batch, so a conflict leaves every role as it was.
    """

    def __init__(self, store: InMemoryTrustStore) -> None:
        self._store = store

    def classify_device(self, user_id: str, device_id: str) -> DeviceRole:
        """Role for a device: its stored role, else primary if the user has none."""
        existing = self._store.get_baseline(user_id, device_id)
        if existing is not None:
            return existing.device_role
        if self.primary_device(user_id) is None:
            return DeviceRole.PRIMARY
        return DeviceRole.SECONDARY

    def primary_device(self, user_id: str) -> Optional[str]:
        for baseline in self._store.list_baselines(user_id):
            if baseline.device_role == DeviceRole.PRIMARY:
                return baseline.device_id
        return None

    def remove_device(self, user_id: str, device_id: str) -> bool:
        removed = self._store.delete_baseline(user_id, device_id)
        if removed:
            logger.info("removed device %s for user %s", device_id, user_id)
        return removed

    def promote(self, user_id: str, exclude_device_id: str) -> PromotionResult:
        """Promote the most recently active secondary to primary.

        Ties on last activity go to the lowest device_id. Every other
        primary (normally just ``exclude_device_id``) is relabelled secondary.
        """
        baselines = self._store.list_baselines(user_id)
        candidates = [
            b for b in baselines
            if b.device_role == DeviceRole.SECONDARY and b.device_id != exclude_device_id
        ]
        if not candidates:
            blocked = NoEligibleSecondary(user_id=user_id, excluded_device_id=exclude_device_id)
            logger.warning(
                "promotion blocked for user %s: %s", user_id, blocked.reason,
            )
            return blocked

        chosen = max(candidates, key=lambda b: b.last_activity_utc)

        # demotions and the promotion commit together or not at all
        batch = [
            _with_role(b, DeviceRole.SECONDARY)
            for b in baselines
            if b.device_role == DeviceRole.PRIMARY
        ]
        batch.append(_with_role(chosen, DeviceRole.PRIMARY))
        self._store.put_baselines(batch)

        logger.info(
            "promoted device %s to primary for user %s (replacing %s)",
            chosen.device_id, user_id, exclude_device_id,
        )
        return chosen.device_id

    def execute(self, user_id: str, verdict: DecayResult) -> Optional[CoordinatorOutcome]:
        """Carry out a decay verdict. Non-terminal verdicts return None."""
        if isinstance(verdict, RemoveDevice):
            return CoordinatorOutcome(
                device_id=verdict.device_id,
                removed=self.remove_device(user_id, verdict.device_id),
            )
        if isinstance(verdict, PromoteSecondary):
            result = self.promote(user_id, verdict.device_id)
            if isinstance(result, NoEligibleSecondary):
                return CoordinatorOutcome(device_id=verdict.device_id, blocked=result)
            return CoordinatorOutcome(device_id=verdict.device_id, new_primary_id=result)
        if isinstance(verdict, (Continue, ContinueWithReset, InactivityWarning)):
            return None
        raise TypeError(f"Unknown decay verdict: {type(verdict).__name__}")


def _with_role(baseline: TrustBaseline, role: DeviceRole) -> TrustBaseline:
    if role == DeviceRole.SECONDARY:
        return dataclasses.replace(baseline, device_role=role, consecutive_active_periods=0)
    return dataclasses.replace(baseline, device_role=role)
