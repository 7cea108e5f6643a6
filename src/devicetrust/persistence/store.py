"""In-memory trust store — the persistence collaborator for the engines.

Holds per-device TrustBaselines, per-user raw LocationVisits and per-user
LocationClusters. Reads and writes exchange copies, so engines only ever
work on snapshots: read snapshot -> pure compute -> write snapshot.

Baseline writes are optimistic. Each stored baseline carries a version;
a write must present the version it read, otherwise ConcurrencyViolation
is raised and the caller re-fetches and re-evaluates.
"""

from __future__ import annotations

import copy
import dataclasses
import threading
from typing import Iterable, Optional

from devicetrust.models.location import LocationCluster, LocationVisit
from devicetrust.models.trust import TrustBaseline


class ConcurrencyViolation(Exception):
    """Raised when a versioned write was based on a stale read."""


class InMemoryTrustStore:
    """Thread-safe dict-backed store keyed by user_id[, device_id]."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._baselines: dict[tuple[str, str], TrustBaseline] = {}
        self._visits: dict[str, dict[str, LocationVisit]] = {}
        self._clusters: dict[str, dict[str, LocationCluster]] = {}

    # ------------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------------

    def get_baseline(self, user_id: str, device_id: str) -> Optional[TrustBaseline]:
        with self._lock:
            stored = self._baselines.get((user_id, device_id))
            return dataclasses.replace(stored) if stored else None

    def put_baseline(self, baseline: TrustBaseline) -> TrustBaseline:
        """Write a baseline whose ``version`` is the version it was read at.

        New baselines carry version 0. Returns the stored copy with the
        incremented version.
        """
        with self._lock:
            stored = self._baselines.get(baseline.key)
            current = stored.version if stored else 0
            if baseline.version != current:
                raise ConcurrencyViolation(
                    f"baseline {baseline.user_id}/{baseline.device_id}: "
                    f"expected version {baseline.version}, store has {current}"
                )
            written = dataclasses.replace(baseline, version=current + 1)
            self._baselines[baseline.key] = written
            return dataclasses.replace(written)

    def put_baselines(self, baselines: list[TrustBaseline]) -> list[TrustBaseline]:
        """Write several baselines as one unit.

        Every version is checked before anything is written, so a single
        stale baseline rejects the whole batch and the store is unchanged.
        """
        keys = [b.key for b in baselines]
        if len(set(keys)) != len(keys):
            raise ValueError("put_baselines: duplicate baseline key in batch")

        with self._lock:
            for baseline in baselines:
                stored = self._baselines.get(baseline.key)
                current = stored.version if stored else 0
                if baseline.version != current:
                    raise ConcurrencyViolation(
                        f"baseline {baseline.user_id}/{baseline.device_id}: "
                        f"expected version {baseline.version}, store has {current}"
                    )
            written = []
            for baseline in baselines:
                record = dataclasses.replace(baseline, version=baseline.version + 1)
                self._baselines[baseline.key] = record
                written.append(dataclasses.replace(record))
            return written

    def delete_baseline(self, user_id: str, device_id: str) -> bool:
        with self._lock:
            return self._baselines.pop((user_id, device_id), None) is not None

    def list_baselines(self, user_id: str) -> list[TrustBaseline]:
        """All device baselines for a user, ordered by device_id."""
        with self._lock:
            return [
                dataclasses.replace(b)
                for key, b in sorted(self._baselines.items())
                if key[0] == user_id
            ]

    # ------------------------------------------------------------------
    # Raw visits
    # ------------------------------------------------------------------

    def list_visits(self, user_id: str) -> list[LocationVisit]:
        with self._lock:
            return [copy.deepcopy(v) for v in self._visits.get(user_id, {}).values()]

    def put_visit(self, visit: LocationVisit) -> None:
        with self._lock:
            self._visits.setdefault(visit.user_id, {})[visit.visit_id] = copy.deepcopy(visit)

    def delete_visits(self, user_id: str, visit_ids: Iterable[str]) -> int:
        with self._lock:
            bucket = self._visits.get(user_id, {})
            removed = 0
            for visit_id in visit_ids:
                if bucket.pop(visit_id, None) is not None:
                    removed += 1
            return removed

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    def list_clusters(self, user_id: str) -> list[LocationCluster]:
        """Clusters in creation order."""
        with self._lock:
            return [copy.deepcopy(c) for c in self._clusters.get(user_id, {}).values()]

    def put_cluster(self, cluster: LocationCluster) -> None:
        with self._lock:
            self._clusters.setdefault(cluster.user_id, {})[cluster.cluster_id] = copy.deepcopy(cluster)
