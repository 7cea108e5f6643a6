"""Tests for the trust scorer — proves scoring bounds and deductions hold."""

import itertools
import pytest
from pathlib import Path

from devicetrust.models.trust import BotClassification, TrustSignals, TrustStatus
from devicetrust.policy.resolver import PolicyResolver
from devicetrust.trust.scorer import TrustScorer


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def scorer(resolver: PolicyResolver) -> TrustScorer:
    return TrustScorer(resolver)


def _signals(**overrides) -> TrustSignals:
    base = dict(
        jailbreak_detected=False,
        vpn_active=False,
        bot_classification=BotClassification.HUMAN,
        inside_trusted_zone=True,
        recent_restart=False,
    )
    base.update(overrides)
    return TrustSignals(**base)


def _all_signal_bundles():
    for jb, vpn, bot, zone, restart in itertools.product(
        (False, True), (False, True), list(BotClassification), (False, True), (False, True),
    ):
        yield dict(
            jailbreak_detected=jb,
            vpn_active=vpn,
            bot_classification=bot,
            inside_trusted_zone=zone,
            recent_restart=restart,
        )


class TestDeductions:
    def test_clean_device_scores_100(self, scorer: TrustScorer) -> None:
        assert scorer.score_signals(_signals()) == 100

    def test_outside_zone(self, scorer: TrustScorer) -> None:
        assert scorer.score_signals(_signals(inside_trusted_zone=False)) == 95

    def test_vpn(self, scorer: TrustScorer) -> None:
        assert scorer.score_signals(_signals(vpn_active=True)) == 85

    def test_jailbreak(self, scorer: TrustScorer) -> None:
        assert scorer.score_signals(_signals(jailbreak_detected=True)) == 70

    def test_jailbreak_with_vpn_compound(self, scorer: TrustScorer) -> None:
        # 100 - 30 - 15 - 20 (compound)
        assert scorer.score_signals(_signals(jailbreak_detected=True, vpn_active=True)) == 35

    @pytest.mark.parametrize("bot,expected", [
        (BotClassification.HUMAN, 100),
        (BotClassification.UNKNOWN, 90),
        (BotClassification.SUSPICIOUS, 80),
        (BotClassification.BOT, 60),
    ])
    def test_bot_classification(self, scorer: TrustScorer, bot, expected) -> None:
        assert scorer.score_signals(_signals(bot_classification=bot)) == expected

    def test_recent_restart(self, scorer: TrustScorer) -> None:
        assert scorer.score_signals(_signals(recent_restart=True)) == 95

    def test_clamped_at_zero(self, scorer: TrustScorer) -> None:
        """Everything wrong: raw total goes negative, score clamps to 0."""
        breakdown = scorer.explain(_signals(
            jailbreak_detected=True,
            vpn_active=True,
            bot_classification=BotClassification.BOT,
            inside_trusted_zone=False,
            recent_restart=True,
        ))
        assert breakdown.raw_score == 100 - 30 - 15 - 40 - 20 - 5 - 5
        assert breakdown.score == 0

    def test_breakdown_lists_factors(self, scorer: TrustScorer) -> None:
        breakdown = scorer.explain(_signals(vpn_active=True, inside_trusted_zone=False))
        assert [d.factor for d in breakdown.deductions] == ["vpn", "outside_trusted_zone"]
        assert breakdown.total_deducted == 20
        assert breakdown.score == 80


class TestScorerProperties:
    def test_always_in_range(self, scorer: TrustScorer) -> None:
        for bundle in _all_signal_bundles():
            assert 0 <= scorer.score_signals(TrustSignals(**bundle)) <= 100

    def test_deterministic(self, scorer: TrustScorer) -> None:
        for bundle in _all_signal_bundles():
            signals = TrustSignals(**bundle)
            assert scorer.score_signals(signals) == scorer.score_signals(signals)

    def test_monotone_in_each_flag(self, scorer: TrustScorer) -> None:
        """Turning any bad condition on never raises the score."""
        for bundle in _all_signal_bundles():
            for flag in ("jailbreak_detected", "vpn_active", "recent_restart"):
                if bundle[flag]:
                    continue
                before = scorer.score_signals(TrustSignals(**bundle))
                after = scorer.score_signals(TrustSignals(**{**bundle, flag: True}))
                assert after <= before

            if bundle["inside_trusted_zone"]:
                before = scorer.score_signals(TrustSignals(**bundle))
                after = scorer.score_signals(
                    TrustSignals(**{**bundle, "inside_trusted_zone": False}),
                )
                assert after <= before

    def test_monotone_in_bot_severity(self, scorer: TrustScorer) -> None:
        order = [
            BotClassification.HUMAN,
            BotClassification.UNKNOWN,
            BotClassification.SUSPICIOUS,
            BotClassification.BOT,
        ]
        scores = [scorer.score_signals(_signals(bot_classification=b)) for b in order]
        assert scores == sorted(scores, reverse=True)


class TestClassification:
    @pytest.mark.parametrize("score,status", [
        (100, TrustStatus.TRUSTED),
        (51, TrustStatus.TRUSTED),
        (50, TrustStatus.REVERIFY_IDENTITY),
        (31, TrustStatus.REVERIFY_IDENTITY),
        (30, TrustStatus.BLOCKED),
        (0, TrustStatus.BLOCKED),
    ])
    def test_thresholds(self, scorer: TrustScorer, score: int, status: TrustStatus) -> None:
        assert scorer.classify(score) == status

    def test_access_granted_only_when_trusted(self) -> None:
        assert TrustStatus.TRUSTED.is_access_granted
        assert not TrustStatus.REVERIFY_IDENTITY.is_access_granted
        assert TrustStatus.BLOCKED.requires_action


class TestSignalNormalization:
    """Missing collector output is replaced with neutral defaults."""

    def test_all_missing(self) -> None:
        signals = TrustSignals.from_raw()
        assert signals == TrustSignals(
            jailbreak_detected=False,
            vpn_active=False,
            bot_classification=BotClassification.UNKNOWN,
            inside_trusted_zone=False,
            recent_restart=False,
        )

    def test_bot_from_string(self) -> None:
        assert TrustSignals.from_raw(bot_classification="BOT").bot_classification == BotClassification.BOT

    def test_unrecognised_bot_is_unknown(self) -> None:
        signals = TrustSignals.from_raw(bot_classification="robot-ish")
        assert signals.bot_classification == BotClassification.UNKNOWN

    def test_recent_restart_from_uptime(self) -> None:
        assert TrustSignals.from_raw(uptime_seconds=120).recent_restart
        assert not TrustSignals.from_raw(uptime_seconds=300).recent_restart
        assert not TrustSignals.from_raw(uptime_seconds=None).recent_restart
