"""Tests for the decay and recovery engine — proves the tick state machine."""

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from devicetrust.models.decay import (
    Continue,
    ContinueWithReset,
    DecaySeverity,
    InactivityWarning,
    PromoteSecondary,
    RemoveDevice,
    VerdictKind,
    is_terminal,
    verdict_to_dict,
)
from devicetrust.models.trust import DeviceRole, TrustBaseline
from devicetrust.policy.resolver import PolicyResolver
from devicetrust.trust.decay import DecayEngine


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def engine(resolver: PolicyResolver) -> DecayEngine:
    return DecayEngine(resolver)


def _days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


def _evaluate(
    engine: DecayEngine,
    elapsed_days: float,
    score: int = 100,
    streak: int = 0,
    role: DeviceRole = DeviceRole.SECONDARY,
):
    return engine.evaluate(
        device_id="d1",
        previous_score=score,
        last_activity_utc=_days_ago(elapsed_days),
        consecutive_active_periods=streak,
        device_role=role,
        now=NOW,
    )


class TestDecayTable:
    @pytest.mark.parametrize("periods,expected", [
        (0, 0), (1, 1), (2, 3), (3, 4), (4, 6), (7, 12),
        (8, 15), (10, 21), (11, 24), (12, 27), (14, 33),
        (15, 38), (20, 63),
    ])
    def test_production_values(self, engine: DecayEngine, periods: int, expected: int) -> None:
        assert engine.decay(periods) == expected

    def test_negative_periods_are_zero(self, engine: DecayEngine) -> None:
        assert engine.decay(-3) == 0

    def test_monotone_non_decreasing(self, engine: DecayEngine) -> None:
        values = [engine.decay(p) for p in range(0, 60)]
        assert values == sorted(values)

    def test_marginal_cost_never_shrinks(self, engine: DecayEngine) -> None:
        """Each extra period costs at least as much as the one before it (untruncated)."""
        rates = []
        lower = 0
        for tier in engine.profile.tiers:
            upper = 40 if tier.upper is None else tier.upper
            rates.extend([tier.rate] * (upper - lower))
            lower = upper
        assert rates == sorted(rates)

    def test_schedule(self, engine: DecayEngine) -> None:
        rows = engine.schedule(3)
        assert rows == [(0, 0), (1, 1), (2, 3), (3, 4)]

    def test_schedule_negative_max(self, engine: DecayEngine) -> None:
        assert engine.schedule(-1) == [(0, 0)]


class TestElapsedPeriods:
    def test_whole_periods_only(self, engine: DecayEngine) -> None:
        assert engine.elapsed_periods(_days_ago(2.9), NOW) == 2

    def test_clock_skew_clamps_to_zero(self, engine: DecayEngine) -> None:
        assert engine.elapsed_periods(NOW + timedelta(hours=5), NOW) == 0

    def test_future_activity_treated_as_active(self, engine: DecayEngine) -> None:
        result = engine.evaluate(
            device_id="d1",
            previous_score=60,
            last_activity_utc=NOW + timedelta(days=3),
            consecutive_active_periods=0,
            device_role=DeviceRole.PRIMARY,
            now=NOW,
        )
        assert result == Continue(
            new_score=61, consecutive_active_periods=1,
            decay_applied=0, recovery_gained=1, elapsed_periods=0,
        )


class TestBranches:
    def test_recovery_within_one_period(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=1, score=70, streak=2)
        assert isinstance(result, Continue)
        assert result.new_score == 71
        assert result.consecutive_active_periods == 3
        assert result.recovery_gained == 1
        assert result.decay_applied == 0

    def test_recovery_capped_at_100(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=0, score=100)
        assert isinstance(result, Continue)
        assert result.new_score == 100
        assert result.recovery_gained == 0

    def test_gap_decay_resets_streak(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=10, score=100, streak=5)
        assert result == Continue(
            new_score=79, consecutive_active_periods=0,
            decay_applied=21, recovery_gained=0, elapsed_periods=10,
        )

    def test_gap_decay_floors_at_zero(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=9, score=10)
        assert isinstance(result, Continue)
        assert result.new_score == 0

    def test_warning_at_threshold(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=11, score=90)
        assert isinstance(result, InactivityWarning)
        assert result.new_score == 90 - 24
        assert result.periods_remaining == 4
        assert result.message == "Device will be affected in 4 days due to inactivity"

    def test_warning_singular_unit(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=14)
        assert isinstance(result, InactivityWarning)
        assert result.periods_remaining == 1
        assert result.message.endswith("in 1 day due to inactivity")

    def test_secondary_removed_at_critical(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=15, role=DeviceRole.SECONDARY)
        assert isinstance(result, RemoveDevice)
        assert result.device_id == "d1"
        assert result.elapsed_periods == 15

    def test_unknown_role_removed_at_critical(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=30, role=DeviceRole.UNKNOWN)
        assert isinstance(result, RemoveDevice)

    def test_primary_promotes_at_critical(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=15, role=DeviceRole.PRIMARY)
        assert isinstance(result, PromoteSecondary)
        assert result.device_id == "d1"
        assert is_terminal(result)

    def test_idempotent(self, engine: DecayEngine) -> None:
        for days in (0, 1, 4, 11, 15):
            assert _evaluate(engine, days, score=80) == _evaluate(engine, days, score=80)


class TestStreakReset:
    def test_reset_fires_once_per_streak(self, engine: DecayEngine) -> None:
        baseline = TrustBaseline(
            user_id="u1",
            device_id="d1",
            previous_score=80,
            last_activity_utc=NOW,
        )
        kinds = []
        for _ in range(14):
            result = engine.evaluate_baseline(baseline, NOW)
            kinds.append(result.kind)
            baseline = DecayEngine.apply_result(baseline, result)

        resets = [i for i, k in enumerate(kinds) if k == VerdictKind.CONTINUE_WITH_RESET]
        # threshold 7: the 7th and 14th ticks complete a streak
        assert resets == [6, 13]
        assert baseline.consecutive_active_periods == 0
        assert baseline.previous_score == 94

    def test_reset_message(self, engine: DecayEngine) -> None:
        result = _evaluate(engine, elapsed_days=0, score=50, streak=6)
        assert isinstance(result, ContinueWithReset)
        assert result.new_score == 51
        assert result.message == "Active for 7 consecutive days"


class TestApplyResult:
    def _baseline(self) -> TrustBaseline:
        return TrustBaseline(
            user_id="u1",
            device_id="d1",
            previous_score=80,
            last_activity_utc=_days_ago(5),
            consecutive_active_periods=3,
            device_role=DeviceRole.PRIMARY,
            version=4,
        )

    def test_continue(self) -> None:
        baseline = self._baseline()
        updated = DecayEngine.apply_result(
            baseline, Continue(new_score=72, consecutive_active_periods=0,
                               decay_applied=8, recovery_gained=0),
        )
        assert updated.previous_score == 72
        assert updated.consecutive_active_periods == 0
        assert updated.version == 4
        assert updated.device_role == DeviceRole.PRIMARY
        assert updated.last_activity_utc == baseline.last_activity_utc

    def test_does_not_mutate_input(self) -> None:
        baseline = self._baseline()
        DecayEngine.apply_result(baseline, ContinueWithReset(new_score=81, message="x"))
        assert baseline.previous_score == 80
        assert baseline.consecutive_active_periods == 3

    def test_warning_clears_streak(self) -> None:
        updated = DecayEngine.apply_result(
            self._baseline(),
            InactivityWarning(new_score=60, message="w", periods_remaining=2),
        )
        assert updated.previous_score == 60
        assert updated.consecutive_active_periods == 0

    def test_terminal_returns_none(self) -> None:
        baseline = self._baseline()
        assert DecayEngine.apply_result(baseline, RemoveDevice("d1", "gone")) is None
        assert DecayEngine.apply_result(baseline, PromoteSecondary("d1", "stale")) is None

    def test_unknown_verdict_rejected(self) -> None:
        with pytest.raises(TypeError):
            DecayEngine.apply_result(self._baseline(), object())


class TestSeverity:
    @pytest.mark.parametrize("drop,severity", [
        (0, DecaySeverity.NONE),
        (-2, DecaySeverity.NONE),
        (3, DecaySeverity.MINIMAL),
        (5, DecaySeverity.LOW),
        (21, DecaySeverity.MEDIUM),
        (33, DecaySeverity.HIGH),
        (63, DecaySeverity.CRITICAL),
    ])
    def test_bands(self, engine: DecayEngine, drop: int, severity: DecaySeverity) -> None:
        assert engine.classify_severity(drop) == severity


class TestAcceleratedProfile:
    @pytest.fixture
    def fast(self, resolver: PolicyResolver) -> DecayEngine:
        return DecayEngine(resolver, profile="accelerated")

    def test_decay_values(self, fast: DecayEngine) -> None:
        assert [fast.decay(p) for p in range(6)] == [0, 1, 3, 6, 11, 16]

    def test_hour_periods(self, fast: DecayEngine) -> None:
        assert fast.elapsed_periods(NOW - timedelta(minutes=150), NOW) == 2

    def test_warning_after_one_hour(self, fast: DecayEngine) -> None:
        result = fast.evaluate("d1", 90, NOW - timedelta(minutes=61), 0, DeviceRole.SECONDARY, NOW)
        assert isinstance(result, InactivityWarning)
        assert result.new_score == 89
        assert result.message == "Device will be affected in 1 hour due to inactivity"

    def test_removal_after_two_hours(self, fast: DecayEngine) -> None:
        result = fast.evaluate("d1", 90, NOW - timedelta(hours=2), 0, DeviceRole.SECONDARY, NOW)
        assert isinstance(result, RemoveDevice)

    def test_reset_after_three_ticks(self, fast: DecayEngine) -> None:
        result = fast.evaluate("d1", 90, NOW, 2, DeviceRole.PRIMARY, NOW)
        assert isinstance(result, ContinueWithReset)
        assert result.message == "Active for 3 consecutive hours"

    def test_unknown_profile(self, resolver: PolicyResolver) -> None:
        with pytest.raises(KeyError):
            DecayEngine(resolver, profile="glacial")


class TestVerdictSerialization:
    def test_continue_dict(self) -> None:
        data = verdict_to_dict(Continue(79, 0, 21, 0, elapsed_periods=10))
        assert data == {
            "kind": "continue",
            "elapsed_periods": 10,
            "new_score": 79,
            "consecutive_active_periods": 0,
            "decay_applied": 21,
            "recovery_gained": 0,
        }

    def test_terminal_dict(self) -> None:
        data = verdict_to_dict(RemoveDevice("d9", "Device inactive for 15 days", 15))
        assert data["kind"] == "remove_device"
        assert data["device_id"] == "d9"

    def test_unknown_rejected(self) -> None:
        class Stray:
            kind = VerdictKind.CONTINUE
            elapsed_periods = 0

        with pytest.raises(TypeError):
            verdict_to_dict(Stray())
