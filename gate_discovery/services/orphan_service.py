"""
Orphan Assigner Service

Attaches check-ins without a gate to a live gate of the event's active
strategy:
- physical: nearest gate by Haversine distance within the bound, with
  confidence 1 - distance / bound; low-confidence matches are refused
- virtual: the gate of the check-in's category

Check-ins that match nothing stay orphaned and are counted, never dropped.
"""
import logging
from typing import Dict, Any, Optional, List, Tuple
from datetime import datetime
from sqlalchemy.orm import Session

from gate_discovery.config import settings
from gate_discovery.db.models import CheckinEvent, Gate
from gate_discovery.engine.geo import haversine_distance
from gate_discovery.engine.gps_quality import is_valid_gps
from gate_discovery.engine.types import GateKind
from gate_discovery.services.checkin_service import checkin_service

logger = logging.getLogger(__name__)

METHOD_GPS = "gps_haversine"
METHOD_CATEGORY = "category_match"


class OrphanService:
    """Assigns unassigned check-ins to materialized gates."""

    def __init__(self, max_distance: float = None, min_confidence: float = None):
        self.max_distance = max_distance or settings.ORPHAN_MAX_DISTANCE_METERS
        self.min_confidence = (
            min_confidence if min_confidence is not None else settings.ORPHAN_MIN_CONFIDENCE
        )

    def nearest_gate(
        self,
        checkin: CheckinEvent,
        gates: List[Gate]
    ) -> Tuple[Optional[Gate], Optional[float]]:
        best, best_distance = None, None
        for gate in gates:
            distance = haversine_distance(
                checkin.latitude, checkin.longitude, gate.latitude, gate.longitude
            )
            # Equal distances go to the older gate
            if best_distance is None or distance < best_distance:
                best, best_distance = gate, distance
        return best, best_distance

    def _match_physical(
        self,
        checkin: CheckinEvent,
        gates: List[Gate]
    ) -> Tuple[Optional[Gate], float]:
        if not is_valid_gps(
            checkin.latitude, checkin.longitude, checkin.accuracy_meters,
            settings.GPS_REJECTION_CEILING_METERS
        ):
            return None, 0.0
        gate, distance = self.nearest_gate(checkin, gates)
        if gate is None or distance > self.max_distance:
            return None, 0.0
        confidence = 1 - distance / self.max_distance
        if confidence < self.min_confidence:
            return None, 0.0
        return gate, round(confidence, 4)

    def assign_orphans(
        self,
        db: Session,
        event_id: str,
        strategy: Optional[GateKind],
        max_checkin_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Assign orphaned check-ins of one event.

        Only check-ins up to max_checkin_id (the pass snapshot) are touched.
        """
        query = checkin_service.usable_query(db, event_id)
        if max_checkin_id is not None:
            query = query.filter(CheckinEvent.id <= max_checkin_id)
        total = query.count()
        orphans = query.filter(CheckinEvent.gate_id.is_(None)).order_by(CheckinEvent.id).all()

        gates = []
        if strategy is not None:
            gates = db.query(Gate).filter(
                Gate.event_id == event_id,
                Gate.kind == strategy.value,
                Gate.status != "archived"
            ).order_by(Gate.id).all()

        assigned = 0
        affected = set()
        now = datetime.utcnow()

        try:
            if strategy == GateKind.PHYSICAL:
                located = [g for g in gates if g.latitude is not None and g.longitude is not None]
                for checkin in orphans:
                    gate, confidence = self._match_physical(checkin, located)
                    if gate is None:
                        continue
                    self._assign(checkin, gate, METHOD_GPS, confidence, now)
                    assigned += 1
                    affected.add(gate.id)
            elif strategy == GateKind.VIRTUAL:
                by_category = {}
                for gate in gates:
                    by_category.setdefault(gate.dominant_category, gate)
                for checkin in orphans:
                    gate = by_category.get(checkin.category)
                    if gate is None:
                        continue
                    self._assign(checkin, gate, METHOD_CATEGORY, round(gate.confidence, 4), now)
                    assigned += 1
                    affected.add(gate.id)
            db.commit()
        except Exception as e:
            logger.error(f"Error assigning orphans for event {event_id}: {e}")
            db.rollback()
            raise

        remaining = len(orphans) - assigned
        logger.info(
            f"Orphan assignment for event {event_id}: {assigned} assigned, "
            f"{remaining} still orphaned"
        )
        return {
            "checkins_considered": total,
            "checkins_previously_assigned": total - len(orphans),
            "checkins_assigned": assigned,
            "gates_affected": len(affected),
            "orphans_remaining": remaining,
        }

    def _assign(
        self,
        checkin: CheckinEvent,
        gate: Gate,
        method: str,
        confidence: float,
        now: datetime
    ):
        checkin.gate_id = gate.id
        checkin.assignment_method = method
        checkin.assignment_confidence = confidence
        checkin.assigned_at = now


# Singleton instance
orphan_service = OrphanService()
