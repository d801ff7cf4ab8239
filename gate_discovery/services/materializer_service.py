"""
Gate Materializer Service

Turns the winning candidates of a pass into persisted gates, idempotently:
- physical candidates match the nearest unclaimed gate within the
  stability radius, virtual candidates the gate of the same category
- matched gates take the candidate's statistics, unmatched candidates
  become new gates
- gates no candidate supports miss a pass and are archived once they have
  missed enough consecutive passes
- gates of the losing strategy are archived so only one strategy is active
- archiving a gate detaches its check-ins so the orphan stage re-assigns them
- a candidate over a gate that was merged away feeds the gate it was merged
  into instead of reviving the absorbed one

Lifecycle: candidate -> probation -> confirmed -> archived
"""
import logging
from typing import Dict, Any, Optional, Sequence
from datetime import datetime
from sqlalchemy.orm import Session

from gate_discovery.config import settings
from gate_discovery.db.models import CheckinEvent, Gate
from gate_discovery.engine.discovery import DiscoveryResult
from gate_discovery.engine.geo import haversine_distance
from gate_discovery.engine.scoring import category_entropy, enforcement_strength
from gate_discovery.engine.types import GateCandidate, GateKind, Thresholds

logger = logging.getLogger(__name__)

STATUS_CANDIDATE = "candidate"
STATUS_PROBATION = "probation"
STATUS_CONFIRMED = "confirmed"
STATUS_ARCHIVED = "archived"

PROBATION_MIN_CONFIDENCE = 0.65
CONFIRMATION_MIN_CONFIDENCE = 0.85

# assignment_method of check-ins detached from an archived gate
DETACH_STRATEGY_SWITCH = "strategy_switch"
DETACH_GATE_ARCHIVED = "gate_archived"


def next_status(
    current: Optional[str],
    confidence: float,
    member_count: int,
    thresholds: Thresholds
) -> str:
    """Lifecycle status of a gate that a candidate supports in this pass."""
    if current is None:
        return STATUS_PROBATION if confidence >= PROBATION_MIN_CONFIDENCE else STATUS_CANDIDATE
    if current == STATUS_ARCHIVED:
        return STATUS_PROBATION
    if current == STATUS_CANDIDATE and confidence >= PROBATION_MIN_CONFIDENCE:
        return STATUS_PROBATION
    if (
        current == STATUS_PROBATION
        and member_count >= thresholds.promotion_sample_size
        and confidence >= CONFIRMATION_MIN_CONFIDENCE
    ):
        return STATUS_CONFIRMED
    return current


class MaterializerService:
    """Persists discovery winners as gates."""

    def __init__(self, stability_radius: float = None, archive_after: int = None):
        self.stability_radius = stability_radius or settings.GATE_STABILITY_RADIUS_METERS
        self.archive_after = archive_after or settings.ARCHIVE_AFTER_MISSED_PASSES

    def _distance(self, candidate: GateCandidate, gate: Gate) -> Optional[float]:
        """Distance when the gate may stand for the candidate, else None."""
        if candidate.kind == GateKind.VIRTUAL:
            return 0.0 if gate.dominant_category == candidate.dominant_category else None
        if gate.latitude is None or gate.longitude is None:
            return None
        distance = haversine_distance(
            candidate.centroid[0], candidate.centroid[1],
            gate.latitude, gate.longitude
        )
        return distance if distance <= self.stability_radius else None

    def _match_all(
        self,
        candidates: Sequence[GateCandidate],
        gates: Sequence[Gate]
    ) -> Dict[int, Gate]:
        """
        Pair candidates (by index) with gates, one gate per candidate.

        Closest pairs are settled first so candidate order cannot steal a
        neighbour's gate; live gates win over archived ones at any distance.
        """
        pairs = []
        for index, candidate in enumerate(candidates):
            for gate in gates:
                distance = self._distance(candidate, gate)
                if distance is not None:
                    pairs.append((gate.status == STATUS_ARCHIVED, distance, index, gate.id, gate))
        pairs.sort(key=lambda pair: pair[:4])

        matches, used = {}, set()
        for _, _, index, gate_id, gate in pairs:
            if index in matches or gate_id in used:
                continue
            matches[index] = gate
            used.add(gate_id)
        return matches

    def _survivor(self, gate: Gate, by_id: Dict[int, Gate]) -> Gate:
        """The gate a merged-away gate ended up in, following chained merges."""
        seen = set()
        while gate.merged_into_id in by_id and gate.id not in seen:
            seen.add(gate.id)
            gate = by_id[gate.merged_into_id]
        return gate

    def _detach(self, db: Session, gate: Gate, reason: str, now: datetime) -> int:
        """Unassign an archived gate's check-ins; the orphan stage picks them up."""
        return db.query(CheckinEvent).filter(
            CheckinEvent.gate_id == gate.id
        ).update({
            CheckinEvent.gate_id: None,
            CheckinEvent.assignment_method: reason,
            CheckinEvent.assignment_confidence: None,
            CheckinEvent.assigned_at: now,
        }, synchronize_session=False)

    def _apply(self, gate: Gate, candidate: GateCandidate, now: datetime):
        gate.name = candidate.name
        gate.confidence = candidate.confidence
        gate.enforcement_strength = enforcement_strength(candidate.confidence)
        gate.member_count = candidate.member_count
        gate.dominant_category = candidate.dominant_category
        gate.category_distribution = dict(candidate.category_distribution)
        gate.avg_accuracy = candidate.avg_accuracy
        gate.derivation_method = candidate.derivation_method
        gate.missed_passes = 0
        gate.last_recomputed_at = now
        if candidate.centroid:
            gate.latitude, gate.longitude = candidate.centroid
            gate.detection_radius_meters = round(
                max(candidate.max_member_distance or 0.0, candidate.epsilon_meters or 0.0), 2
            )
        gate.details = {
            "scores": candidate.scores.to_dict() if candidate.scores else None,
            "category_entropy": round(category_entropy(candidate.category_distribution), 4),
            "epsilon_meters": candidate.epsilon_meters,
            "accuracy_band": candidate.accuracy_band.value if candidate.accuracy_band else None,
            "accuracy_spread": candidate.accuracy_spread,
            "outliers_removed": candidate.outliers_removed,
            "unique_attendees": candidate.unique_attendees,
            "active_hours": candidate.active_hours,
            "event_share": round(candidate.event_share, 4),
            "temporal_span_hours": round(candidate.temporal_span_hours, 2),
            "first_seen": candidate.first_seen.isoformat(),
            "last_seen": candidate.last_seen.isoformat(),
        }

    def materialize(
        self,
        db: Session,
        result: DiscoveryResult,
        thresholds: Thresholds,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Create/update gates from the winners of a discovery pass.

        Returns:
            {
                "strategy": "physical" | "virtual",
                "gates_created": 1,
                "gates_updated": 2,
                "gates_archived": 0,
                "checkins_detached": 0,  # unassigned from gates archived here
                "candidates_absorbed": 0,  # fell inside a gate merged away
                "gate_ids": [...]  # gates backed by this pass, candidate order
            }
        """
        now = now or datetime.utcnow()
        strategy = result.strategy
        created = updated = archived = detached = absorbed = 0
        gate_ids = []

        try:
            gates = db.query(Gate).filter(
                Gate.event_id == result.event_id
            ).order_by(Gate.id).all()
            by_id = {gate.id: gate for gate in gates}
            same_kind = [g for g in gates if g.kind == strategy.value]
            active = [g for g in same_kind if g.merged_into_id is None]
            merged = [g for g in same_kind if g.merged_into_id is not None]

            winners = list(result.winners)
            matches = self._match_all(winners, active)
            claimed = {gate.id for gate in matches.values()}

            # A merged-away gate is never revived; its candidate feeds the survivor
            leftovers = [i for i in range(len(winners)) if i not in matches]
            redirected = self._match_all([winners[i] for i in leftovers], merged)
            for position, gate in sorted(redirected.items()):
                survivor = self._survivor(gate, by_id)
                index = leftovers[position]
                if survivor.merged_into_id is not None or survivor.kind != strategy.value:
                    continue
                if survivor.id in claimed:
                    matches[index] = None
                    absorbed += 1
                    continue
                matches[index] = survivor
                claimed.add(survivor.id)

            for index, candidate in enumerate(winners):
                if index in matches:
                    gate = matches[index]
                    if gate is None:
                        continue
                    self._apply(gate, candidate, now)
                    gate.status = next_status(
                        gate.status, candidate.confidence, candidate.member_count, thresholds
                    )
                    updated += 1
                else:
                    gate = Gate(
                        event_id=result.event_id,
                        kind=candidate.kind.value,
                        created_at=now,
                    )
                    self._apply(gate, candidate, now)
                    gate.status = next_status(
                        None, candidate.confidence, candidate.member_count, thresholds
                    )
                    db.add(gate)
                    db.flush()
                    claimed.add(gate.id)
                    created += 1
                gate_ids.append(gate.id)

            for gate in gates:
                if gate.id in claimed or gate.status == STATUS_ARCHIVED:
                    continue
                if gate.kind != strategy.value:
                    gate.status = STATUS_ARCHIVED
                    archived += 1
                    detached += self._detach(db, gate, DETACH_STRATEGY_SWITCH, now)
                    continue
                gate.missed_passes = (gate.missed_passes or 0) + 1
                if gate.missed_passes >= self.archive_after:
                    gate.status = STATUS_ARCHIVED
                    archived += 1
                    detached += self._detach(db, gate, DETACH_GATE_ARCHIVED, now)

            db.commit()
        except Exception as e:
            logger.error(f"Error materializing gates for event {result.event_id}: {e}")
            db.rollback()
            raise

        logger.info(
            f"Materialized {strategy.value} gates for event {result.event_id}: "
            f"{created} created, {updated} updated, {archived} archived, "
            f"{detached} check-ins detached"
        )
        return {
            "strategy": strategy.value,
            "gates_created": created,
            "gates_updated": updated,
            "gates_archived": archived,
            "checkins_detached": detached,
            "candidates_absorbed": absorbed,
            "gate_ids": gate_ids,
        }


# Singleton instance
materializer_service = MaterializerService()
