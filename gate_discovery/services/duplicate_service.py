"""
Duplicate Detector Service

Flags pairs of live physical gates closer than the event's duplicate
distance as merge suggestions. Suggestions are advisory: a merge happens
only when an operator approves one, or when the caller supplies an
auto-approval policy.

Merge confidence = 0.7 * closeness + 0.3 * category overlap, where
closeness = 1 - distance / duplicate_distance and overlap is the shared
mass of the two gates' category distributions.
"""
import logging
from itertools import combinations
from typing import Dict, Any, Optional, List, Callable
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import or_

from gate_discovery.db.models import CheckinEvent, Gate, GateMergeSuggestion
from gate_discovery.engine.geo import haversine_distance
from gate_discovery.engine.types import GateKind, Thresholds

logger = logging.getLogger(__name__)

CLOSENESS_WEIGHT = 0.7
OVERLAP_WEIGHT = 0.3

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_MERGED = "merged"

MERGE_METHOD = "merge_reassignment"

MergePolicy = Callable[[GateMergeSuggestion], bool]


def category_overlap(first: Optional[Dict[str, int]], second: Optional[Dict[str, int]]) -> float:
    """Shared probability mass of two category distributions (0..1)."""
    if not first or not second:
        return 0.0
    first_total = sum(first.values())
    second_total = sum(second.values())
    if not first_total or not second_total:
        return 0.0
    return sum(
        min(first.get(name, 0) / first_total, second.get(name, 0) / second_total)
        for name in set(first) | set(second)
    )


def merge_confidence(distance: float, duplicate_distance: float, overlap: float) -> float:
    closeness = max(0.0, 1.0 - distance / duplicate_distance)
    return round(CLOSENESS_WEIGHT * closeness + OVERLAP_WEIGHT * overlap, 4)


class DuplicateService:
    """Detects and resolves near-coincident gates."""

    def detect(self, db: Session, event_id: str, thresholds: Thresholds) -> Dict[str, Any]:
        gates = db.query(Gate).filter(
            Gate.event_id == event_id,
            Gate.kind == GateKind.PHYSICAL.value,
            Gate.status != "archived",
            Gate.latitude.isnot(None),
            Gate.longitude.isnot(None)
        ).order_by(Gate.id).all()

        found = created = refreshed = 0
        try:
            for primary, secondary in combinations(gates, 2):
                distance = haversine_distance(
                    primary.latitude, primary.longitude,
                    secondary.latitude, secondary.longitude
                )
                if distance >= thresholds.duplicate_distance_meters:
                    continue
                found += 1

                overlap = category_overlap(
                    primary.category_distribution, secondary.category_distribution
                )
                confidence = merge_confidence(
                    distance, thresholds.duplicate_distance_meters, overlap
                )
                reasoning = (
                    f"Gates {primary.id} and {secondary.id} are {distance:.1f}m apart "
                    f"(threshold {thresholds.duplicate_distance_meters:.0f}m), "
                    f"category overlap {overlap:.0%}"
                )

                suggestion = db.query(GateMergeSuggestion).filter(
                    GateMergeSuggestion.event_id == event_id,
                    GateMergeSuggestion.primary_gate_id == primary.id,
                    GateMergeSuggestion.secondary_gate_id == secondary.id
                ).first()
                if suggestion is None:
                    db.add(GateMergeSuggestion(
                        event_id=event_id,
                        primary_gate_id=primary.id,
                        secondary_gate_id=secondary.id,
                        distance_meters=round(distance, 2),
                        category_overlap=round(overlap, 4),
                        confidence=confidence,
                        reasoning=reasoning,
                        status=STATUS_PENDING,
                    ))
                    created += 1
                elif suggestion.status == STATUS_PENDING:
                    suggestion.distance_meters = round(distance, 2)
                    suggestion.category_overlap = round(overlap, 4)
                    suggestion.confidence = confidence
                    suggestion.reasoning = reasoning
                    refreshed += 1
            db.commit()
        except Exception as e:
            logger.error(f"Error detecting duplicate gates for event {event_id}: {e}")
            db.rollback()
            raise

        if found:
            logger.info(f"Event {event_id}: {found} near-duplicate gate pairs ({created} new)")
        return {
            "duplicate_pairs": found,
            "suggestions_created": created,
            "suggestions_refreshed": refreshed,
            "pending_suggestions": self.count_pending(db, event_id),
        }

    def count_pending(self, db: Session, event_id: str) -> int:
        return db.query(GateMergeSuggestion).filter(
            GateMergeSuggestion.event_id == event_id,
            GateMergeSuggestion.status == STATUS_PENDING
        ).count()

    def list_suggestions(
        self,
        db: Session,
        event_id: str,
        status: Optional[str] = STATUS_PENDING
    ) -> List[Dict[str, Any]]:
        query = db.query(GateMergeSuggestion).filter(GateMergeSuggestion.event_id == event_id)
        if status:
            query = query.filter(GateMergeSuggestion.status == status)
        return [
            self.to_dict(s)
            for s in query.order_by(GateMergeSuggestion.confidence.desc(), GateMergeSuggestion.id)
        ]

    def to_dict(self, suggestion: GateMergeSuggestion) -> Dict[str, Any]:
        return {
            "id": suggestion.id,
            "event_id": suggestion.event_id,
            "primary_gate_id": suggestion.primary_gate_id,
            "secondary_gate_id": suggestion.secondary_gate_id,
            "distance_meters": suggestion.distance_meters,
            "category_overlap": suggestion.category_overlap,
            "confidence": suggestion.confidence,
            "reasoning": suggestion.reasoning,
            "status": suggestion.status,
            "reviewed_by": suggestion.reviewed_by,
            "reviewed_at": suggestion.reviewed_at.isoformat() if suggestion.reviewed_at else None,
        }

    def resolve(
        self,
        db: Session,
        suggestion_id: int,
        approve: bool,
        reviewed_by: str = "operator"
    ) -> Dict[str, Any]:
        """Approve (and merge) or reject a pending suggestion."""
        suggestion = db.query(GateMergeSuggestion).filter(
            GateMergeSuggestion.id == suggestion_id
        ).first()
        if not suggestion:
            return {"success": False, "error": "not_found"}
        if suggestion.status != STATUS_PENDING:
            return {"success": False, "error": f"already_{suggestion.status}"}

        try:
            suggestion.reviewed_by = reviewed_by
            suggestion.reviewed_at = datetime.utcnow()
            if approve:
                suggestion.status = STATUS_APPROVED
                reassigned = self._merge(db, suggestion)
            else:
                suggestion.status = STATUS_REJECTED
                reassigned = 0
            db.commit()
        except Exception as e:
            logger.error(f"Error resolving merge suggestion {suggestion_id}: {e}")
            db.rollback()
            raise

        logger.info(f"Merge suggestion {suggestion_id} resolved: {suggestion.status}")
        return {
            "success": True,
            "suggestion": self.to_dict(suggestion),
            "checkins_reassigned": reassigned,
        }

    def _merge(self, db: Session, suggestion: GateMergeSuggestion) -> int:
        """Fold the secondary gate into the primary. Caller commits."""
        primary = db.query(Gate).filter(Gate.id == suggestion.primary_gate_id).first()
        secondary = db.query(Gate).filter(Gate.id == suggestion.secondary_gate_id).first()

        reassigned = db.query(CheckinEvent).filter(
            CheckinEvent.gate_id == secondary.id
        ).update({
            CheckinEvent.gate_id: primary.id,
            CheckinEvent.assignment_method: MERGE_METHOD,
            CheckinEvent.assigned_at: datetime.utcnow(),
        }, synchronize_session=False)

        distribution = dict(primary.category_distribution or {})
        for name, count in (secondary.category_distribution or {}).items():
            distribution[name] = distribution.get(name, 0) + count
        primary.category_distribution = distribution
        primary.member_count = (primary.member_count or 0) + (secondary.member_count or 0)
        secondary.status = "archived"
        secondary.member_count = 0
        secondary.merged_into_id = primary.id
        suggestion.status = STATUS_MERGED

        # Other open pairings of the absorbed gate are moot now
        db.query(GateMergeSuggestion).filter(
            GateMergeSuggestion.id != suggestion.id,
            GateMergeSuggestion.status == STATUS_PENDING,
            or_(
                GateMergeSuggestion.primary_gate_id == secondary.id,
                GateMergeSuggestion.secondary_gate_id == secondary.id
            )
        ).update({
            GateMergeSuggestion.status: STATUS_REJECTED,
            GateMergeSuggestion.reviewed_by: "system:merged",
            GateMergeSuggestion.reviewed_at: datetime.utcnow(),
        }, synchronize_session=False)

        logger.info(
            f"Merged gate {secondary.id} into {primary.id}: {reassigned} check-ins reassigned"
        )
        return reassigned

    def apply_policy(self, db: Session, event_id: str, policy: MergePolicy) -> int:
        """Resolve pending suggestions with an injected auto-approval policy."""
        merged = 0
        pending = db.query(GateMergeSuggestion).filter(
            GateMergeSuggestion.event_id == event_id,
            GateMergeSuggestion.status == STATUS_PENDING
        ).order_by(GateMergeSuggestion.confidence.desc(), GateMergeSuggestion.id).all()
        for suggestion in pending:
            # An earlier merge may already have closed this one
            db.refresh(suggestion)
            if suggestion.status != STATUS_PENDING or not policy(suggestion):
                continue
            result = self.resolve(db, suggestion.id, approve=True, reviewed_by="system:policy")
            if result.get("success"):
                merged += 1
        return merged


# Singleton instance
duplicate_service = DuplicateService()
