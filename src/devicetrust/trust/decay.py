"""Decay and recovery engine — tick-driven trust erosion over inactivity.

Decay model (production profile, one period = one day):
    periods 1-3   billed at 1.5 points each
    periods 4-7   billed at 2.0 points each
    periods 8-14  billed at 3.0 points each
    periods 15+   billed at 5.0 points each

Each period is charged at the rate of the bracket it falls in, like a tax
bracket, and the total is truncated to an integer once. Decay(3) = 4,
Decay(7) = 12, Decay(14) = 33, Decay(20) = 63.

Per-tick transitions, with elapsed = whole periods since last activity:
1. elapsed >= critical           -> PromoteSecondary (primary) or RemoveDevice
2. elapsed >= warning threshold  -> InactivityWarning with decayed score
3. elapsed <= 1                  -> recovery (+1, capped at 100); the streak
                                    counter grows and resets at the threshold
4. otherwise                     -> Continue with gap decay, streak reset to 0

The engine is a pure function of its inputs. Evaluating the same inputs
twice yields the same verdict; persisting that verdict twice is the
caller's problem.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from devicetrust.models.decay import (
    Continue,
    ContinueWithReset,
    DecayResult,
    DecaySeverity,
    InactivityWarning,
    PromoteSecondary,
    RemoveDevice,
)
from devicetrust.models.trust import DeviceRole, TrustBaseline
from devicetrust.policy.resolver import DecayProfile, PolicyResolver


logger = logging.getLogger(__name__)


class DecayEngine:
    """Evaluates one decay tick for one device.

    Usage:
        engine = DecayEngine(resolver)                     # default profile
        engine = DecayEngine(resolver, profile="accelerated")
        result = engine.evaluate_baseline(baseline, now)
    """

    def __init__(self, resolver: PolicyResolver, profile: Optional[str] = None) -> None:
        self._profile = resolver.decay_profile(profile)
        self._severity_bands = resolver.decay_severity_bands()

    @property
    def profile(self) -> DecayProfile:
        return self._profile

    # ------------------------------------------------------------------
    # Decay math
    # ------------------------------------------------------------------

    def decay(self, periods: int) -> int:
        """Total decay owed for ``periods`` inactive periods.

        Monotone non-decreasing and convex in ``periods``.
        """
        if periods <= 0:
            return 0

        total = 0.0
        lower = 0
        for tier in self._profile.tiers:
            if periods <= lower:
                break
            upper = periods if tier.upper is None else min(periods, tier.upper)
            total += (upper - lower) * tier.rate
            lower = upper
        return int(total)

    def schedule(self, max_periods: int) -> list[tuple[int, int]]:
        """Return (periods, cumulative decay) rows for 0..max_periods."""
        return [(p, self.decay(p)) for p in range(max(0, max_periods) + 1)]

    def elapsed_periods(self, last_activity_utc: datetime, now: datetime) -> int:
        """Whole periods between last activity and now; skew clamps to 0."""
        seconds = (now - last_activity_utc).total_seconds()
        if seconds <= 0:
            return 0
        return int(seconds // self._profile.period_seconds)

    def classify_severity(self, drop: int) -> DecaySeverity:
        """Classify the size of a score drop."""
        bands = self._severity_bands
        if drop >= bands.get("critical", 50):
            return DecaySeverity.CRITICAL
        if drop >= bands.get("high", 30):
            return DecaySeverity.HIGH
        if drop >= bands.get("medium", 15):
            return DecaySeverity.MEDIUM
        if drop >= bands.get("low", 5):
            return DecaySeverity.LOW
        if drop > 0:
            return DecaySeverity.MINIMAL
        return DecaySeverity.NONE

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def evaluate(
        self,
        device_id: str,
        previous_score: int,
        last_activity_utc: datetime,
        consecutive_active_periods: int,
        device_role: DeviceRole,
        now: datetime,
    ) -> DecayResult:
        """Run one tick of the decay state machine."""
        profile = self._profile
        elapsed = self.elapsed_periods(last_activity_utc, now)
        units = profile.unit_label(elapsed)

        logger.debug(
            "decay tick device=%s role=%s elapsed=%d %s score=%d streak=%d",
            device_id, device_role.value, elapsed, units,
            previous_score, consecutive_active_periods,
        )

        if elapsed >= profile.critical_threshold:
            if device_role == DeviceRole.PRIMARY:
                return PromoteSecondary(
                    device_id=device_id,
                    reason=(
                        f"Primary device inactive for {elapsed} {units} - "
                        f"promoting most active secondary"
                    ),
                    elapsed_periods=elapsed,
                )
            return RemoveDevice(
                device_id=device_id,
                reason=f"Device inactive for {elapsed} {units}",
                elapsed_periods=elapsed,
            )

        if elapsed >= profile.warning_threshold:
            decay = self.decay(elapsed)
            remaining = profile.critical_threshold - elapsed
            return InactivityWarning(
                new_score=max(0, previous_score - decay),
                message=(
                    f"Device will be affected in {remaining} "
                    f"{profile.unit_label(remaining)} due to inactivity"
                ),
                periods_remaining=remaining,
                decay_applied=decay,
                elapsed_periods=elapsed,
            )

        if elapsed <= 1:
            streak = consecutive_active_periods + 1
            new_score = min(100, previous_score + 1)
            if streak >= profile.recovery_reset_threshold:
                return ContinueWithReset(
                    new_score=new_score,
                    message=f"Active for {streak} consecutive {profile.unit_label(streak)}",
                    elapsed_periods=elapsed,
                )
            return Continue(
                new_score=new_score,
                consecutive_active_periods=streak,
                decay_applied=0,
                recovery_gained=max(0, new_score - previous_score),
                elapsed_periods=elapsed,
            )

        decay = self.decay(elapsed)
        return Continue(
            new_score=max(0, previous_score - decay),
            consecutive_active_periods=0,
            decay_applied=decay,
            recovery_gained=0,
            elapsed_periods=elapsed,
        )

    def evaluate_baseline(self, baseline: TrustBaseline, now: datetime) -> DecayResult:
        return self.evaluate(
            device_id=baseline.device_id,
            previous_score=baseline.previous_score,
            last_activity_utc=baseline.last_activity_utc,
            consecutive_active_periods=baseline.consecutive_active_periods,
            device_role=baseline.device_role,
            now=now,
        )

    @staticmethod
    def apply_result(baseline: TrustBaseline, result: DecayResult) -> Optional[TrustBaseline]:
        """Build the next baseline snapshot for a non-terminal verdict.

        Returns None for RemoveDevice/PromoteSecondary: those belong to the
        role coordinator. Does NOT mutate the input baseline.
        """
        if isinstance(result, Continue):
            score, streak = result.new_score, result.consecutive_active_periods
        elif isinstance(result, ContinueWithReset):
            score, streak = result.new_score, 0
        elif isinstance(result, InactivityWarning):
            score, streak = result.new_score, 0
        elif isinstance(result, (RemoveDevice, PromoteSecondary)):
            return None
        else:
            raise TypeError(f"Unknown decay verdict: {type(result).__name__}")

        return TrustBaseline(
            user_id=baseline.user_id,
            device_id=baseline.device_id,
            previous_score=score,
            last_activity_utc=baseline.last_activity_utc,
            consecutive_active_periods=streak,
            device_role=baseline.device_role,
            version=baseline.version,
        )
