"""Trust service — unified facade over the trust evaluation engine.

This is the primary interface for programmatic access to devicetrust.
It orchestrates all subsystems:
- Signal scoring (instantaneous trust score per activity event)
- Device enrollment and role classification (primary/secondary)
- Decay ticks (inactivity erosion, recovery, terminal verdicts)
- Role coordination (device removal, primary promotion)
- Trusted-zone clustering (visit recording, zone membership)
- Audit (every state change is appended to the event log)

Every operation reads a snapshot from the store, computes with the pure
engines, and writes a new snapshot back. Writes are optimistic: on a
ConcurrencyViolation the whole operation is re-read and re-evaluated,
up to the configured retry limit. Operations on the same device (and
visit recording for the same user) are serialized by in-process locks;
role changes (enrollment, removal, promotion) additionally hold a
per-user lock so a user's devices never race on primary assignment.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from devicetrust.devices.coordinator import DeviceRoleCoordinator, NoEligibleSecondary
from devicetrust.location.clusters import LocationClusterEngine
from devicetrust.models.decay import (
    Continue,
    InactivityWarning,
    PromoteSecondary,
    RemoveDevice,
    is_terminal,
    verdict_to_dict,
)
from devicetrust.models.location import Coordinates
from devicetrust.models.trust import BotClassification, TrustBaseline, TrustSignals
from devicetrust.persistence.event_log import EventKind, EventLog, EventRecord
from devicetrust.persistence.store import ConcurrencyViolation, InMemoryTrustStore
from devicetrust.policy.resolver import PolicyResolver
from devicetrust.trust.decay import DecayEngine
from devicetrust.trust.scorer import TrustScorer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TrustService:
    """Trust evaluation facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = TrustService(resolver)

        signals = service.build_signals("alice", coordinates=here, vpn_active=True)
        result = service.record_activity("alice", "phone-1", signals)

        # Called by the scheduler once per device per period
        result = service.run_decay_tick("alice", "phone-1")

        service.record_visit("alice", home, arrival, departure)
        service.is_within_trusted_zone("alice", here)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: Optional[InMemoryTrustStore] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        decay_profile: Optional[str] = None,
    ) -> None:
        self._resolver = resolver
        self._store = store or InMemoryTrustStore()
        self._event_log = event_log or EventLog()
        self._clock = clock or _utc_now

        self._scorer = TrustScorer(resolver)
        self._decay = DecayEngine(resolver, decay_profile)
        self._clusters = LocationClusterEngine(resolver, self._store)
        self._roles = DeviceRoleCoordinator(self._store)

        self._max_attempts = max(1, resolver.max_write_retries())
        self._locks: weakref.WeakValueDictionary[tuple[str, ...], threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_guard = threading.Lock()

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def decay_engine(self) -> DecayEngine:
        return self._decay

    # ------------------------------------------------------------------
    # Signals and scoring
    # ------------------------------------------------------------------

    def build_signals(
        self,
        user_id: str,
        coordinates: Optional[Coordinates] = None,
        jailbreak_detected: Optional[bool] = None,
        vpn_active: Optional[bool] = None,
        bot_classification: Optional[BotClassification | str] = None,
        uptime_seconds: Optional[float] = None,
    ) -> TrustSignals:
        """Normalize collector output into a complete signal bundle.

        Without coordinates the device counts as outside every trusted zone.
        """
        inside = (
            coordinates is not None
            and self._clusters.is_within_trusted_zone(user_id, coordinates)
        )
        return TrustSignals.from_raw(
            jailbreak_detected=jailbreak_detected,
            vpn_active=vpn_active,
            bot_classification=bot_classification,
            inside_trusted_zone=inside,
            uptime_seconds=uptime_seconds,
            recent_restart_seconds=self._resolver.recent_restart_seconds(),
        )

    def score_signals(self, signals: TrustSignals) -> int:
        return self._scorer.score_signals(signals)

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    def record_activity(
        self,
        user_id: str,
        device_id: str,
        signals: TrustSignals,
    ) -> ServiceResult:
        """Record an activity event for a device.

        1. Score the signals.
        2. Enroll the device if it has no baseline.
        3. Otherwise evaluate the idle gap first. A pending terminal verdict
           is executed (a stale secondary is removed and re-enrolled; a
           stale primary hands over primary). Gap decay is charged.
        4. Store min(signal score, decayed score) with last activity = now.
        5. Run the on-demand decay tick (recovery for the fresh activity).
        """
        if not user_id or not device_id:
            return ServiceResult(success=False, errors=["user_id and device_id are required"])

        with self._lock("device", user_id, device_id):
            return self._with_retries(
                lambda: self._record_activity(user_id, device_id, signals),
            )

    def _record_activity(
        self,
        user_id: str,
        device_id: str,
        signals: TrustSignals,
    ) -> ServiceResult:
        now = self._clock()
        breakdown = self._scorer.explain(signals)
        score = breakdown.score
        events: list[tuple[EventKind, str, dict[str, Any]]] = []
        data: dict[str, Any] = {
            "signal_score": score,
            "deductions": {d.factor: d.points for d in breakdown.deductions},
        }

        baseline = self._store.get_baseline(user_id, device_id)
        if baseline is not None:
            pending = self._decay.evaluate_baseline(baseline, now)
            if is_terminal(pending):
                data["pending_verdict"] = verdict_to_dict(pending)
                self._emit_all(self._execute_terminal(user_id, pending), now)
                baseline = self._store.get_baseline(user_id, device_id)
            elif isinstance(pending, (Continue, InactivityWarning)) and pending.decay_applied:
                # the idle gap is charged (score and streak) before the new signal is folded in
                data["gap_decay"] = pending.decay_applied
                baseline = self._decay.apply_result(baseline, pending)

        if baseline is None:
            with self._lock("roles", user_id):
                baseline = self._store.put_baseline(TrustBaseline(
                    user_id=user_id,
                    device_id=device_id,
                    previous_score=score,
                    last_activity_utc=now,
                    device_role=self._roles.classify_device(user_id, device_id),
                ))
            data["enrolled"] = True
            events.append((EventKind.DEVICE_ENROLLED, f"{user_id}/{device_id}", {
                "score": score,
                "device_role": baseline.device_role.value,
            }))
        else:
            baseline = self._store.put_baseline(dataclasses.replace(
                baseline,
                previous_score=min(score, baseline.previous_score),
                last_activity_utc=now,
            ))
            data["enrolled"] = False

        verdict = self._decay.evaluate_baseline(baseline, now)
        updated = self._decay.apply_result(baseline, verdict)
        if updated is not None:
            baseline = self._store.put_baseline(updated)

        events.append((EventKind.ACTIVITY_RECORDED, f"{user_id}/{device_id}", {
            "signal_score": score,
            "stored_score": baseline.previous_score,
            "verdict": verdict_to_dict(verdict),
        }))
        self._emit_all(events, now)

        data.update(
            trust_score=baseline.previous_score,
            status=self._scorer.classify(baseline.previous_score).value,
            device_role=baseline.device_role.value,
            consecutive_active_periods=baseline.consecutive_active_periods,
            verdict=verdict_to_dict(verdict),
        )
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Decay ticks
    # ------------------------------------------------------------------

    def run_decay_tick(self, user_id: str, device_id: str) -> ServiceResult:
        """Evaluate one decay tick for a device and persist or act on it."""
        with self._lock("device", user_id, device_id):
            return self._with_retries(lambda: self._run_decay_tick(user_id, device_id))

    def run_decay_sweep(self, user_id: str) -> ServiceResult:
        """Tick every device the user has, in device_id order."""
        results: dict[str, Any] = {}
        errors: list[str] = []
        for baseline in self._store.list_baselines(user_id):
            result = self.run_decay_tick(user_id, baseline.device_id)
            results[baseline.device_id] = result.data
            errors.extend(result.errors)
        return ServiceResult(success=not errors, errors=errors, data={"devices": results})

    def _run_decay_tick(self, user_id: str, device_id: str) -> ServiceResult:
        now = self._clock()
        baseline = self._store.get_baseline(user_id, device_id)
        if baseline is None:
            return ServiceResult(
                success=False,
                errors=[f"No trust baseline for {user_id}/{device_id}"],
            )

        verdict = self._decay.evaluate_baseline(baseline, now)
        data: dict[str, Any] = {"verdict": verdict_to_dict(verdict)}

        if is_terminal(verdict):
            events = self._execute_terminal(user_id, verdict)
            self._emit_all(events, now)
            data["primary_device"] = self._roles.primary_device(user_id)
            return ServiceResult(success=True, data=data)

        updated = self._decay.apply_result(baseline, verdict)
        stored = self._store.put_baseline(updated)
        severity = self._decay.classify_severity(baseline.previous_score - stored.previous_score)

        events = [(EventKind.DECAY_EVALUATED, f"{user_id}/{device_id}", {
            "previous_score": baseline.previous_score,
            "new_score": stored.previous_score,
            "severity": severity.value,
            "verdict": data["verdict"],
        })]
        if isinstance(verdict, InactivityWarning):
            logger.warning(
                "inactivity warning %s/%s: %s", user_id, device_id, verdict.message,
            )
            events.append((EventKind.INACTIVITY_WARNING, f"{user_id}/{device_id}", {
                "periods_remaining": verdict.periods_remaining,
                "message": verdict.message,
            }))
        self._emit_all(events, now)

        data.update(
            trust_score=stored.previous_score,
            status=self._scorer.classify(stored.previous_score).value,
            severity=severity.value,
            consecutive_active_periods=stored.consecutive_active_periods,
        )
        return ServiceResult(success=True, data=data)

    def _execute_terminal(
        self,
        user_id: str,
        verdict: RemoveDevice | PromoteSecondary,
    ) -> list[tuple[EventKind, str, dict[str, Any]]]:
        # role changes for one user are serialized across all of its devices
        with self._lock("roles", user_id):
            outcome = self._roles.execute(user_id, verdict)
        subject = f"{user_id}/{verdict.device_id}"

        if isinstance(verdict, RemoveDevice):
            return [(EventKind.DEVICE_REMOVED, subject, {
                "reason": verdict.reason,
                "removed": outcome.removed,
            })]

        if isinstance(outcome.blocked, NoEligibleSecondary):
            return [(EventKind.PROMOTION_BLOCKED, subject, {
                "reason": outcome.blocked.reason,
            })]
        return [(EventKind.PRIMARY_PROMOTED, subject, {
            "reason": verdict.reason,
            "new_primary": outcome.new_primary_id,
        })]

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    def record_visit(
        self,
        user_id: str,
        coordinates: Coordinates,
        arrival_utc: datetime,
        departure_utc: datetime,
    ) -> ServiceResult:
        """Record a visit session, then fold nearby visits into a zone."""
        if not user_id:
            return ServiceResult(success=False, errors=["user_id is required"])

        with self._lock("user", user_id):
            now = self._clock()
            visit = self._clusters.record_visit(user_id, coordinates, arrival_utc, departure_utc)
            cluster = self._clusters.evaluate_cluster_for_location(user_id, coordinates, now=now)

            events: list[tuple[EventKind, str, dict[str, Any]]] = [
                (EventKind.VISIT_RECORDED, user_id, {
                    "latitude": coordinates.latitude,
                    "longitude": coordinates.longitude,
                    "visit_count": visit.visit_count,
                    "cumulative_duration_minutes": visit.cumulative_duration_minutes,
                }),
            ]
            data: dict[str, Any] = {"visit_id": visit.visit_id, "cluster_id": None}
            if cluster is not None:
                events.append((EventKind.CLUSTER_UPDATED, user_id, {
                    "cluster_id": cluster.cluster_id,
                    "visit_count": cluster.visit_count,
                    "total_duration_minutes": cluster.total_duration_minutes,
                }))
                data.update(
                    cluster_id=cluster.cluster_id,
                    cluster_visit_count=cluster.visit_count,
                    cluster_duration_minutes=cluster.total_duration_minutes,
                )
            self._emit_all(events, now)
            return ServiceResult(success=True, data=data)

    def is_within_trusted_zone(self, user_id: str, coordinates: Coordinates) -> bool:
        return self._clusters.is_within_trusted_zone(user_id, coordinates)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_baseline(self, user_id: str, device_id: str) -> Optional[TrustBaseline]:
        return self._store.get_baseline(user_id, device_id)

    def primary_device(self, user_id: str) -> Optional[str]:
        return self._roles.primary_device(user_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _with_retries(self, operation: Callable[[], ServiceResult]) -> ServiceResult:
        last_error: Optional[ConcurrencyViolation] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return operation()
            except ConcurrencyViolation as exc:
                last_error = exc
                logger.debug("write conflict (attempt %d): %s", attempt, exc)
        logger.warning("giving up after %d attempts: %s", self._max_attempts, last_error)
        return ServiceResult(
            success=False,
            errors=[f"Concurrent update not resolved after {self._max_attempts} attempts: {last_error}"],
        )

    def _lock(self, *key: str) -> threading.Lock:
        """Lock for one key. Entries disappear once no caller holds the lock."""
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def _emit_all(
        self,
        events: list[tuple[EventKind, str, dict[str, Any]]],
        now: datetime,
    ) -> None:
        for kind, subject, payload in events:
            self._event_log.append(EventRecord.create(
                event_id=uuid.uuid4().hex,
                event_kind=kind,
                subject_id=subject,
                payload=payload,
                timestamp_utc=now,
            ))
