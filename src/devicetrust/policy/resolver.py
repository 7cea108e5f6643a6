"""Policy resolver — loads executable trust parameters from config/.

All thresholds the engines consult live in ``trust_params.json``:
- Decay profiles (production in days, accelerated in hour blocks).
- Scorer deductions and status thresholds.
- Location clustering rules (radius, visit and duration minimums).
- Decay severity bands and persistence retry limits.

Configuration is validated on load. Invalid parameters raise ValueError
immediately rather than surfacing later as a wrong verdict.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


PARAMS_FILENAME = "trust_params.json"


@dataclass(frozen=True)
class DecayTier:
    """One bracket of the progressive decay schedule.

    ``upper`` is the last period billed at ``rate``; None means open-ended.
    """
    upper: Optional[int]
    rate: float


@dataclass(frozen=True)
class DecayProfile:
    """Time unit and thresholds for the decay state machine.

    The algorithm is unit-agnostic: production bills real days,
    the accelerated profile bills hour-long blocks.
    """
    name: str
    period_seconds: int
    period_name: str
    critical_threshold: int
    recovery_reset_threshold: int
    warning_ratio: float
    tiers: tuple[DecayTier, ...]

    @property
    def warning_threshold(self) -> int:
        return int(math.floor(self.critical_threshold * self.warning_ratio))

    def unit_label(self, periods: int) -> str:
        return self.period_name if periods == 1 else f"{self.period_name}s"


@dataclass(frozen=True)
class ClusterPolicy:
    """Rules for promoting raw visits into a trusted zone."""
    radius_meters: float
    min_visits: int
    min_duration_minutes: int
    max_member_points: int


@dataclass(frozen=True)
class StatusThresholds:
    """Score cut-offs for the trust status classification."""
    reverify_at_or_below: int
    blocked_at_or_below: int


class PolicyResolver:
    """Read-only accessor over the trust parameter document.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        profile = resolver.decay_profile("accelerated")
    """

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params
        self._profiles = {
            name: self._build_profile(name, raw)
            for name, raw in params.get("decay_profiles", {}).items()
        }
        if not self._profiles:
            raise ValueError("trust params define no decay profiles")
        default = params.get("default_decay_profile", "production")
        if default not in self._profiles:
            raise ValueError(f"default decay profile not defined: {default}")
        self._default_profile = default
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        path = Path(config_dir) / PARAMS_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def from_dict(cls, params: dict[str, Any]) -> PolicyResolver:
        return cls(params)

    # ------------------------------------------------------------------
    # Decay
    # ------------------------------------------------------------------

    def decay_profile(self, name: Optional[str] = None) -> DecayProfile:
        """Return a named decay profile (default profile if name is None).

        Raises KeyError for an unknown profile name.
        """
        key = name or self._default_profile
        if key not in self._profiles:
            raise KeyError(f"Unknown decay profile: {key}")
        return self._profiles[key]

    def decay_profile_names(self) -> list[str]:
        return sorted(self._profiles)

    @property
    def default_decay_profile(self) -> str:
        return self._default_profile

    def decay_severity_bands(self) -> dict[str, int]:
        return dict(self._params.get("decay_severity", {
            "critical": 50, "high": 30, "medium": 15, "low": 5,
        }))

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def base_score(self) -> int:
        return int(self._scoring().get("base_score", 100))

    def score_deductions(self) -> dict[str, int]:
        return dict(self._scoring()["deductions"])

    def status_thresholds(self) -> StatusThresholds:
        raw = self._scoring().get("status_thresholds", {})
        return StatusThresholds(
            reverify_at_or_below=int(raw.get("reverify_at_or_below", 50)),
            blocked_at_or_below=int(raw.get("blocked_at_or_below", 30)),
        )

    def recent_restart_seconds(self) -> int:
        return int(self._scoring().get("recent_restart_seconds", 300))

    # ------------------------------------------------------------------
    # Location clustering
    # ------------------------------------------------------------------

    def cluster_policy(self) -> ClusterPolicy:
        raw = self._params.get("location_clustering", {})
        return ClusterPolicy(
            radius_meters=float(raw.get("radius_meters", 700)),
            min_visits=int(raw.get("min_visits", 3)),
            min_duration_minutes=int(raw.get("min_duration_minutes", 45)),
            max_member_points=int(raw.get("max_member_points", 50)),
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def max_write_retries(self) -> int:
        return int(self._params.get("persistence", {}).get("max_write_retries", 3))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _scoring(self) -> dict[str, Any]:
        return self._params.get("scoring", {})

    @staticmethod
    def _build_profile(name: str, raw: dict[str, Any]) -> DecayProfile:
        tiers = tuple(
            DecayTier(
                upper=None if t.get("upper") is None else int(t["upper"]),
                rate=float(t["rate"]),
            )
            for t in raw.get("tiers", [])
        )
        return DecayProfile(
            name=name,
            period_seconds=int(raw["period_seconds"]),
            period_name=str(raw.get("period_name", "period")),
            critical_threshold=int(raw["critical_threshold"]),
            recovery_reset_threshold=int(raw["recovery_reset_threshold"]),
            warning_ratio=float(raw.get("warning_ratio", 0.75)),
            tiers=tiers,
        )

    def _validate(self) -> None:
        errors: list[str] = []

        for profile in self._profiles.values():
            label = f"decay profile '{profile.name}'"
            if profile.period_seconds <= 0:
                errors.append(f"{label}: period_seconds must be > 0")
            if profile.critical_threshold <= 0:
                errors.append(f"{label}: critical_threshold must be > 0")
            if profile.recovery_reset_threshold <= 0:
                errors.append(f"{label}: recovery_reset_threshold must be > 0")
            if not 0.0 < profile.warning_ratio <= 1.0:
                errors.append(f"{label}: warning_ratio must be in (0, 1]")
            if not profile.tiers:
                errors.append(f"{label}: at least one decay tier required")
                continue
            if profile.tiers[-1].upper is not None:
                errors.append(f"{label}: last tier must be open-ended (upper = null)")
            previous = 0
            for tier in profile.tiers[:-1]:
                if tier.upper is None or tier.upper <= previous:
                    errors.append(f"{label}: tier bounds must be strictly increasing")
                    break
                previous = tier.upper
            if any(t.rate < 0 for t in profile.tiers):
                errors.append(f"{label}: decay rates must be non-negative")

        deductions = self._scoring().get("deductions")
        if not isinstance(deductions, dict):
            errors.append("scoring.deductions missing")
        elif any(v < 0 for v in deductions.values()):
            errors.append("scoring deductions must be non-negative")

        thresholds = self.status_thresholds()
        if thresholds.blocked_at_or_below > thresholds.reverify_at_or_below:
            errors.append("blocked threshold cannot exceed reverify threshold")

        cluster = self.cluster_policy()
        if cluster.radius_meters <= 0:
            errors.append("location_clustering.radius_meters must be > 0")
        if cluster.max_member_points <= 0:
            errors.append("location_clustering.max_member_points must be > 0")

        if errors:
            raise ValueError("Invalid trust params: " + "; ".join(errors))
