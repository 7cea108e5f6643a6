"""Location visit and trusted-zone cluster models.

A LocationVisit is raw, per-user history: sessions at one coordinate
accumulate visit count and minutes. Once enough visits land within the
cluster radius, they are folded into a LocationCluster and deleted.
Only the cluster's aggregate counters and a bounded list of member
points survive the fold.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Coordinates:
    """WGS84 latitude/longitude in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")


@dataclass
class LocationVisit:
    """Cumulative raw visit record for one user at one coordinate."""
    user_id: str
    coordinates: Coordinates
    arrival_utc: datetime
    visit_count: int = 0
    cumulative_duration_minutes: int = 0
    last_departure_utc: Optional[datetime] = None
    visit_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class ClusterMemberPoint:
    """A folded visit location retained inside a cluster."""
    coordinates: Coordinates
    recorded_utc: datetime


@dataclass
class LocationCluster:
    """A habitually visited area, used as a trusted zone.

    The center is fixed when the cluster is created and never moves.
    Exists only once visit_count >= 3 and total_duration_minutes >= 45
    (the configured minimums).
    """
    user_id: str
    center: Coordinates
    radius_meters: float
    visit_count: int = 0
    total_duration_minutes: int = 0
    member_points: list[ClusterMemberPoint] = field(default_factory=list)
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None
    cluster_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def is_qualified(self, min_visits: int, min_duration_minutes: int) -> bool:
        return (
            self.visit_count >= min_visits
            and self.total_duration_minutes >= min_duration_minutes
        )
