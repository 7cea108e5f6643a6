"""Trust baseline and signal data models.

Trust in devicetrust is:
- Scoped to a (user, device) pairing, never to a user alone.
- An integer in [0, 100]; 100 means nothing suspicious was observed.
- Reduced by instantaneous security signals (jailbreak, VPN, bot behaviour).
- Eroded by inactivity and restored by sustained activity (see trust.decay).
- Tied to a device role: each user has at most one primary device.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class DeviceRole(str, enum.Enum):
    """Role a device plays for its user."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    UNKNOWN = "unknown"


class BotClassification(str, enum.Enum):
    """Behavioural verdict from the bot detector.

    HUMAN: natural touch and motion patterns
    SUSPICIOUS: partially automated-looking interaction
    BOT: high-confidence automation
    UNKNOWN: detector could not decide
    """
    HUMAN = "human"
    SUSPICIOUS = "suspicious"
    BOT = "bot"
    UNKNOWN = "unknown"


class TrustStatus(str, enum.Enum):
    """Access decision derived from a trust score."""
    TRUSTED = "trusted"
    REVERIFY_IDENTITY = "reverify_identity"
    BLOCKED = "blocked"

    @property
    def is_access_granted(self) -> bool:
        return self is TrustStatus.TRUSTED

    @property
    def requires_action(self) -> bool:
        return self is not TrustStatus.TRUSTED


@dataclass(frozen=True)
class TrustSignals:
    """Normalized instantaneous signals consumed by the scorer.

    Every field has a concrete value. Use from_raw() when some
    collectors may not have reported.
    """
    jailbreak_detected: bool = False
    vpn_active: bool = False
    bot_classification: BotClassification = BotClassification.UNKNOWN
    inside_trusted_zone: bool = False
    recent_restart: bool = False

    @classmethod
    def from_raw(
        cls,
        jailbreak_detected: Optional[bool] = None,
        vpn_active: Optional[bool] = None,
        bot_classification: Optional[BotClassification | str] = None,
        inside_trusted_zone: Optional[bool] = None,
        uptime_seconds: Optional[float] = None,
        recent_restart_seconds: int = 300,
    ) -> TrustSignals:
        """Build signals, substituting neutral defaults for missing inputs.

        Missing booleans are False, a missing or unrecognised bot verdict
        is UNKNOWN, missing zone membership means outside any trusted zone,
        and missing uptime is not treated as a recent restart.
        """
        if isinstance(bot_classification, BotClassification):
            bot = bot_classification
        else:
            try:
                bot = BotClassification(str(bot_classification).lower())
            except ValueError:
                bot = BotClassification.UNKNOWN

        recent_restart = (
            uptime_seconds is not None
            and 0 <= uptime_seconds < recent_restart_seconds
        )
        return cls(
            jailbreak_detected=bool(jailbreak_detected),
            vpn_active=bool(vpn_active),
            bot_classification=bot,
            inside_trusted_zone=bool(inside_trusted_zone),
            recent_restart=recent_restart,
        )


@dataclass(frozen=True)
class ScoreDeduction:
    """A single factor's contribution to a score."""
    factor: str
    points: int


@dataclass(frozen=True)
class ScoreBreakdown:
    """Explains how a trust score was reached.

    raw_score may be negative; score is clamped to [0, 100].
    """
    score: int
    raw_score: int
    deductions: list[ScoreDeduction] = field(default_factory=list)

    @property
    def total_deducted(self) -> int:
        return sum(d.points for d in self.deductions)


@dataclass
class TrustBaseline:
    """Per-device trust state, keyed by (user_id, device_id).

    Created on first observed activity. Mutated once per decay tick and
    once per activity event. Deleted only by a RemoveDevice verdict.
    ``version`` supports optimistic writes in the persistence layer.
    """
    user_id: str
    device_id: str
    previous_score: int
    last_activity_utc: datetime
    consecutive_active_periods: int = 0
    device_role: DeviceRole = DeviceRole.UNKNOWN
    version: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.device_id)
