"""
Thresholds Service - per-event AdaptiveThresholds

Events without a stored row use the defaults from settings. The engine
receives an immutable Thresholds value and never reads settings itself.
"""
import logging
from typing import Dict, Any
from sqlalchemy.orm import Session

from gate_discovery.config import settings
from gate_discovery.db.models import AdaptiveThresholds
from gate_discovery.engine.errors import InputError, validate_event_id
from gate_discovery.engine.types import (
    BandEpsilons,
    ConfidenceWeights,
    EngineConfig,
    Thresholds,
)

logger = logging.getLogger(__name__)

# field -> (type, lower bound, upper bound); bounds are inclusive
THRESHOLD_FIELDS = {
    "duplicate_distance_meters": (float, 0.1, 1000.0),
    "min_checkins_for_gate": (int, 1, 10000),
    "confidence_threshold": (float, 0.0, 1.0),
    "max_location_variance_meters": (float, 0.0, 100000.0),
    "promotion_sample_size": (int, 1, 1000000),
}


def default_thresholds() -> Thresholds:
    return Thresholds(
        duplicate_distance_meters=settings.DEFAULT_DUPLICATE_DISTANCE_METERS,
        min_checkins_for_gate=settings.DEFAULT_MIN_CHECKINS_FOR_GATE,
        confidence_threshold=settings.DEFAULT_CONFIDENCE_THRESHOLD,
        max_location_variance_meters=settings.DEFAULT_MAX_LOCATION_VARIANCE_METERS,
        promotion_sample_size=settings.DEFAULT_PROMOTION_SAMPLE_SIZE,
    )


def engine_config_from_settings() -> EngineConfig:
    """Scoring and clustering configuration of this deployment."""
    return EngineConfig(
        weights=ConfidenceWeights(
            sample_size=settings.WEIGHT_SAMPLE_SIZE,
            gps_accuracy=settings.WEIGHT_GPS_ACCURACY,
            category_purity=settings.WEIGHT_CATEGORY_PURITY,
            spatial_consistency=settings.WEIGHT_SPATIAL_CONSISTENCY,
            temporal_spread=settings.WEIGHT_TEMPORAL_SPREAD,
        ),
        band_epsilons=BandEpsilons(
            high=settings.EPSILON_HIGH_METERS,
            good=settings.EPSILON_GOOD_METERS,
            fair=settings.EPSILON_FAIR_METERS,
        ),
        rejection_ceiling_meters=settings.GPS_REJECTION_CEILING_METERS,
        target_span_hours=settings.TARGET_SPAN_HOURS,
        sparse_sample_threshold=settings.SPARSE_SAMPLE_THRESHOLD,
        min_checkins_for_discovery=settings.MIN_CHECKINS_FOR_DISCOVERY,
    )


class ThresholdsService:
    """Reads and updates per-event thresholds."""
    
    def get_thresholds(self, db: Session, event_id: str) -> Thresholds:
        row = db.query(AdaptiveThresholds).filter(
            AdaptiveThresholds.event_id == event_id
        ).first()
        if not row:
            return default_thresholds()
        return Thresholds(
            duplicate_distance_meters=row.duplicate_distance_meters,
            min_checkins_for_gate=row.min_checkins_for_gate,
            confidence_threshold=row.confidence_threshold,
            max_location_variance_meters=row.max_location_variance_meters,
            promotion_sample_size=row.promotion_sample_size,
        )
    
    def describe(self, db: Session, event_id: str) -> Dict[str, Any]:
        event_id = validate_event_id(event_id)
        stored = db.query(AdaptiveThresholds.id).filter(
            AdaptiveThresholds.event_id == event_id
        ).first() is not None
        thresholds = self.get_thresholds(db, event_id)
        return {
            "event_id": event_id,
            "is_default": not stored,
            **{name: getattr(thresholds, name) for name in THRESHOLD_FIELDS},
        }
    
    def _validate(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        clean = {}
        for name, value in updates.items():
            if value is None:
                continue
            if name not in THRESHOLD_FIELDS:
                raise InputError(f"Unknown threshold: {name}")
            kind, low, high = THRESHOLD_FIELDS[name]
            try:
                value = kind(value)
            except (TypeError, ValueError):
                raise InputError(f"{name} must be {kind.__name__}")
            if not low <= value <= high:
                raise InputError(f"{name} must be between {low} and {high}")
            clean[name] = value
        return clean
    
    def update_thresholds(
        self,
        db: Session,
        event_id: str,
        updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Create or update the event's row. Unset fields keep their current value."""
        event_id = validate_event_id(event_id)
        clean = self._validate(updates)
        
        try:
            row = db.query(AdaptiveThresholds).filter(
                AdaptiveThresholds.event_id == event_id
            ).first()
            if not row:
                current = default_thresholds()
                row = AdaptiveThresholds(
                    event_id=event_id,
                    **{name: getattr(current, name) for name in THRESHOLD_FIELDS}
                )
                db.add(row)
            for name, value in clean.items():
                setattr(row, name, value)
            db.commit()
        except Exception as e:
            logger.error(f"Error updating thresholds for event {event_id}: {e}")
            db.rollback()
            raise
        
        logger.info(f"Thresholds updated for event {event_id}: {clean}")
        return self.describe(db, event_id)


# Singleton instance
thresholds_service = ThresholdsService()
