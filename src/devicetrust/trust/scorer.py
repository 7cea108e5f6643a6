"""Trust scorer — reduces a signal bundle to an integer score in [0, 100].

Scoring model:
  score = clamp(base - sum(deductions), 0, 100)

Deductions (trust_params.json, scoring.deductions):
- jailbreak detected                  -30
- VPN active                          -15
- bot / suspicious / unknown behaviour -40 / -20 / -10
- jailbreak AND VPN (compound)        -20 additional
- recent restart (uptime < 5 minutes) -5
- outside every trusted zone          -5

Intermediate totals may go negative; clamping happens once at the end.
The scorer is a pure function of its inputs: no I/O, no exceptions.
"""

from __future__ import annotations

from devicetrust.models.trust import (
    BotClassification,
    ScoreBreakdown,
    ScoreDeduction,
    TrustSignals,
    TrustStatus,
)
from devicetrust.policy.resolver import PolicyResolver


_BEHAVIOR_FACTORS = {
    BotClassification.BOT: "bot",
    BotClassification.SUSPICIOUS: "suspicious",
    BotClassification.UNKNOWN: "unknown_behavior",
}


class TrustScorer:
    """Computes trust scores from normalized signals."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._base = resolver.base_score()
        self._deductions = resolver.score_deductions()
        self._thresholds = resolver.status_thresholds()

    def score_signals(self, signals: TrustSignals) -> int:
        """Return the clamped trust score for a signal bundle."""
        return self.explain(signals).score

    def explain(self, signals: TrustSignals) -> ScoreBreakdown:
        """Score a signal bundle and list every deduction that applied."""
        applied: list[ScoreDeduction] = []

        def deduct(factor: str) -> None:
            points = int(self._deductions.get(factor, 0))
            if points:
                applied.append(ScoreDeduction(factor=factor, points=points))

        if signals.jailbreak_detected:
            deduct("jailbreak")
        if signals.vpn_active:
            deduct("vpn")

        behavior = _BEHAVIOR_FACTORS.get(signals.bot_classification)
        if behavior is not None:
            deduct(behavior)

        if signals.jailbreak_detected and signals.vpn_active:
            deduct("jailbreak_with_vpn")
        if signals.recent_restart:
            deduct("recent_restart")
        if not signals.inside_trusted_zone:
            deduct("outside_trusted_zone")

        raw = self._base - sum(d.points for d in applied)
        return ScoreBreakdown(
            score=max(0, min(100, raw)),
            raw_score=raw,
            deductions=applied,
        )

    def classify(self, score: int) -> TrustStatus:
        """Map a score to an access decision.

        At or below the blocked threshold (30) the device is blocked;
        at or below the reverify threshold (50) identity must be re-verified.
        """
        if score <= self._thresholds.blocked_at_or_below:
            return TrustStatus.BLOCKED
        if score <= self._thresholds.reverify_at_or_below:
            return TrustStatus.REVERIFY_IDENTITY
        return TrustStatus.TRUSTED
