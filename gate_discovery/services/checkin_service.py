"""
Check-in Service - ingestion and discovery snapshots

Ingestion is the high-frequency write path: it validates and stores the
check-in and nothing else. Discovery passes read a snapshot of the usable
rows (status "success", not flagged as fraud or test) bounded by the
highest check-in id seen when the pass started.
"""
import logging
import math
from typing import Dict, Any, Optional, List, Sequence, Tuple
from datetime import datetime, timezone
from sqlalchemy.orm import Session, Query
from sqlalchemy import func

from gate_discovery.db.models import CheckinEvent
from gate_discovery.engine.errors import InputError, validate_event_id
from gate_discovery.engine.types import CheckinSample, DEFAULT_CATEGORY

logger = logging.getLogger(__name__)


def _optional_float(payload: Dict[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InputError(f"{key} must be a number")
    if not math.isfinite(value):
        raise InputError(f"{key} must be finite")
    return value


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return datetime.utcnow()
    if not isinstance(value, datetime):
        try:
            value = datetime.fromisoformat(str(value))
        except ValueError:
            raise InputError(f"timestamp is not ISO-8601: {value}")
    # Stored as naive UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CheckinService:
    """Records check-ins and serves discovery snapshots."""
    
    def build_checkin(self, payload: Dict[str, Any]) -> CheckinEvent:
        """Validate a raw payload into an unsaved CheckinEvent."""
        event_id = validate_event_id(payload.get("event_id"))
        latitude = _optional_float(payload, "latitude")
        longitude = _optional_float(payload, "longitude")
        if (latitude is None) != (longitude is None):
            raise InputError("latitude and longitude must be given together")
        
        category = (payload.get("category") or DEFAULT_CATEGORY).strip() or DEFAULT_CATEGORY
        
        # Out-of-range or inaccurate GPS is stored as reported; the
        # quality filter decides whether discovery uses it
        return CheckinEvent(
            event_id=event_id,
            wristband_id=payload.get("wristband_id"),
            category=category,
            timestamp=_parse_timestamp(payload.get("timestamp")),
            latitude=latitude,
            longitude=longitude,
            accuracy_meters=_optional_float(payload, "accuracy"),
            status=payload.get("status") or "success",
        )
    
    def record_checkin(self, db: Session, payload: Dict[str, Any]) -> CheckinEvent:
        checkin = self.build_checkin(payload)
        try:
            db.add(checkin)
            db.commit()
            db.refresh(checkin)
        except Exception as e:
            logger.error(f"Error recording check-in: {e}")
            db.rollback()
            raise
        return checkin
    
    def record_batch(self, db: Session, payloads: Sequence[Dict[str, Any]]) -> List[CheckinEvent]:
        """Record several check-ins atomically; one malformed payload rejects the batch."""
        checkins = [self.build_checkin(p) for p in payloads]
        try:
            db.add_all(checkins)
            db.commit()
            for checkin in checkins:
                db.refresh(checkin)
        except Exception as e:
            logger.error(f"Error recording check-in batch: {e}")
            db.rollback()
            raise
        return checkins
    
    def usable_query(self, db: Session, event_id: str) -> Query:
        return db.query(CheckinEvent).filter(
            CheckinEvent.event_id == event_id,
            CheckinEvent.status == "success",
            CheckinEvent.is_fraud.isnot(True),
            CheckinEvent.is_test.isnot(True)
        )
    
    def count_usable(self, db: Session, event_id: str) -> int:
        return self.usable_query(db, event_id).count()
    
    def events_in(self, checkins: Sequence[CheckinEvent]) -> List[str]:
        return sorted({c.event_id for c in checkins})
    
    def load_snapshot(
        self,
        db: Session,
        event_id: str,
        max_checkin_id: Optional[int] = None
    ) -> Tuple[List[CheckinSample], int]:
        """
        Usable check-ins of an event as engine samples.
        
        Returns (samples, snapshot_max_id). Rows inserted after the snapshot
        boundary belong to the next pass.
        """
        if max_checkin_id is None:
            max_checkin_id = db.query(func.max(CheckinEvent.id)).filter(
                CheckinEvent.event_id == event_id
            ).scalar() or 0
        
        rows = self.usable_query(db, event_id).filter(
            CheckinEvent.id <= max_checkin_id
        ).order_by(CheckinEvent.id).all()
        
        return [self.to_sample(row) for row in rows], max_checkin_id
    
    def to_sample(self, row: CheckinEvent) -> CheckinSample:
        return CheckinSample(
            checkin_id=row.id,
            category=row.category or DEFAULT_CATEGORY,
            timestamp=row.timestamp,
            wristband_id=row.wristband_id,
            latitude=row.latitude,
            longitude=row.longitude,
            accuracy=row.accuracy_meters,
            gate_id=row.gate_id,
        )


# Singleton instance
checkin_service = CheckinService()
