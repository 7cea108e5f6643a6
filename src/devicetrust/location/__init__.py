"""Location subsystem — trusted-zone clustering."""

from devicetrust.location.clusters import LocationClusterEngine
from devicetrust.location.geo import distance_meters

__all__ = [
    "LocationClusterEngine",
    "distance_meters",
]
