"""Location cluster engine — folds raw visits into trusted zones.

A trusted zone is an area the user habitually visits. Rules:
- Raw visits within radius (700 m) of a location are pooled.
- The pool qualifies once it holds >= 3 visits and >= 45 minutes in total.
- A qualifying pool joins the FIRST existing cluster whose center is
  within that cluster's radius; otherwise it seeds a new cluster
  centered on the evaluated location.
- Cluster centers are never re-centered after creation.
- Folded raw visits are deleted. Only the counters and a bounded list
  of member points survive.

Clustering is greedy and single-pass. A location just inside one
cluster's boundary and just outside another's joins whichever is found
first in creation order.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from devicetrust.location.geo import distance_meters
from devicetrust.models.location import (
    ClusterMemberPoint,
    Coordinates,
    LocationCluster,
    LocationVisit,
)
from devicetrust.persistence.store import InMemoryTrustStore
from devicetrust.policy.resolver import PolicyResolver


logger = logging.getLogger(__name__)


class LocationClusterEngine:
    """Maintains per-user visit history and trusted-zone clusters.

    Usage:
        engine = LocationClusterEngine(resolver, store)
        engine.record_visit("alice", home, arrival, departure)
        cluster = engine.evaluate_cluster_for_location("alice", home)
        engine.is_within_trusted_zone("alice", here)
    """

    def __init__(self, resolver: PolicyResolver, store: InMemoryTrustStore) -> None:
        self._policy = resolver.cluster_policy()
        self._store = store

    def record_visit(
        self,
        user_id: str,
        coordinates: Coordinates,
        arrival_utc: datetime,
        departure_utc: datetime,
    ) -> LocationVisit:
        """Add one visit session to the user's raw history.

        A session at coordinates the user already has an open visit for
        extends that visit; otherwise a new visit record starts.
        Negative session lengths count as zero minutes.
        """
        minutes = max(int((departure_utc - arrival_utc).total_seconds() // 60), 0)

        visit = self._find_visit(user_id, coordinates)
        if visit is None:
            visit = LocationVisit(
                user_id=user_id,
                coordinates=coordinates,
                arrival_utc=arrival_utc,
            )
        visit.visit_count += 1
        visit.cumulative_duration_minutes += minutes
        visit.last_departure_utc = departure_utc

        self._store.put_visit(visit)
        return visit

    def evaluate_cluster_for_location(
        self,
        user_id: str,
        coordinates: Coordinates,
        now: Optional[datetime] = None,
    ) -> Optional[LocationCluster]:
        """Fold nearby raw visits into a cluster once they qualify.

        Returns the created or updated cluster, or None if the nearby
        visits do not yet meet the visit and duration minimums.
        """
        now = now or datetime.now(timezone.utc)
        policy = self._policy

        nearby = [
            v for v in self._store.list_visits(user_id)
            if distance_meters(v.coordinates, coordinates) <= policy.radius_meters
        ]
        visit_total = sum(v.visit_count for v in nearby)
        duration_total = sum(v.cumulative_duration_minutes for v in nearby)

        if visit_total < policy.min_visits or duration_total < policy.min_duration_minutes:
            logger.debug(
                "cluster pending user=%s visits=%d minutes=%d",
                user_id, visit_total, duration_total,
            )
            return None

        cluster = self._first_cluster_containing(user_id, coordinates)
        if cluster is None:
            cluster = LocationCluster(
                user_id=user_id,
                center=coordinates,
                radius_meters=policy.radius_meters,
                created_utc=now,
            )

        cluster.visit_count += visit_total
        cluster.total_duration_minutes += duration_total
        for v in nearby:
            cluster.member_points.append(ClusterMemberPoint(
                coordinates=v.coordinates,
                recorded_utc=v.last_departure_utc or v.arrival_utc,
            ))
        if len(cluster.member_points) > policy.max_member_points:
            cluster.member_points = cluster.member_points[-policy.max_member_points:]
        cluster.updated_utc = now

        self._store.put_cluster(cluster)
        self._store.delete_visits(user_id, [v.visit_id for v in nearby])

        logger.info(
            "cluster %s user=%s visits=%d minutes=%d",
            cluster.cluster_id, user_id,
            cluster.visit_count, cluster.total_duration_minutes,
        )
        return cluster

    def is_within_trusted_zone(self, user_id: str, coordinates: Coordinates) -> bool:
        """True if coordinates fall inside a qualified cluster's radius."""
        policy = self._policy
        for cluster in self._store.list_clusters(user_id):
            if (
                distance_meters(cluster.center, coordinates) <= cluster.radius_meters
                and cluster.is_qualified(policy.min_visits, policy.min_duration_minutes)
            ):
                return True
        return False

    def clusters(self, user_id: str) -> list[LocationCluster]:
        return self._store.list_clusters(user_id)

    def nearest_cluster_distance(
        self,
        user_id: str,
        coordinates: Coordinates,
    ) -> Optional[float]:
        """Distance in meters to the closest cluster center, if any."""
        distances = [
            distance_meters(c.center, coordinates)
            for c in self._store.list_clusters(user_id)
        ]
        return min(distances) if distances else None

    def _find_visit(self, user_id: str, coordinates: Coordinates) -> Optional[LocationVisit]:
        for visit in self._store.list_visits(user_id):
            if visit.coordinates == coordinates:
                return visit
        return None

    def _first_cluster_containing(
        self,
        user_id: str,
        coordinates: Coordinates,
    ) -> Optional[LocationCluster]:
        for cluster in self._store.list_clusters(user_id):
            if distance_meters(cluster.center, coordinates) <= cluster.radius_meters:
                return cluster
        return None
