"""Trust subsystem — signal scoring and inactivity decay."""

from devicetrust.trust.decay import DecayEngine
from devicetrust.trust.scorer import TrustScorer

__all__ = [
    "DecayEngine",
    "TrustScorer",
]
