"""Core data models for devicetrust."""

from devicetrust.models.decay import (
    Continue,
    ContinueWithReset,
    DecayResult,
    DecaySeverity,
    InactivityWarning,
    PromoteSecondary,
    RemoveDevice,
    VerdictKind,
)
from devicetrust.models.location import (
    ClusterMemberPoint,
    Coordinates,
    LocationCluster,
    LocationVisit,
)
from devicetrust.models.trust import (
    BotClassification,
    DeviceRole,
    ScoreBreakdown,
    TrustBaseline,
    TrustSignals,
    TrustStatus,
)

__all__ = [
    "Continue",
    "ContinueWithReset",
    "DecayResult",
    "DecaySeverity",
    "InactivityWarning",
    "PromoteSecondary",
    "RemoveDevice",
    "VerdictKind",
    "ClusterMemberPoint",
    "Coordinates",
    "LocationCluster",
    "LocationVisit",
    "BotClassification",
    "DeviceRole",
    "ScoreBreakdown",
    "TrustBaseline",
    "TrustSignals",
    "TrustStatus",
]
