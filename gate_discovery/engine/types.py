"""
Value types shared by the discovery engine.

Everything here is plain data: the engine never touches the database,
the settings module or the clock beyond what callers pass in.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


DEFAULT_CATEGORY = "General"


class GateKind(str, Enum):
    PHYSICAL = "physical"
    VIRTUAL = "virtual"


class AccuracyBand(str, Enum):
    HIGH = "high"
    GOOD = "good"
    FAIR = "fair"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CheckinSample:
    """Snapshot of one check-in as seen by a discovery pass."""

    checkin_id: int
    category: str
    timestamp: datetime
    wristband_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    gate_id: Optional[int] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def point(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class Thresholds:
    """Per-event AdaptiveThresholds. Read-only to the engine."""

    duplicate_distance_meters: float = 25.0
    min_checkins_for_gate: int = 3
    confidence_threshold: float = 0.75
    max_location_variance_meters: float = 5.0
    promotion_sample_size: int = 100


@dataclass(frozen=True)
class ConfidenceWeights:
    sample_size: float = 1.0
    gps_accuracy: float = 1.0
    category_purity: float = 1.0
    spatial_consistency: float = 1.0
    temporal_spread: float = 1.0

    def normalized(self) -> Dict[str, float]:
        raw = {
            "sample_size": self.sample_size,
            "gps_accuracy": self.gps_accuracy,
            "category_purity": self.category_purity,
            "spatial_consistency": self.spatial_consistency,
            "temporal_spread": self.temporal_spread,
        }
        if any(value < 0 for value in raw.values()):
            raise ValueError("Confidence weights must be non-negative.")
        total = sum(raw.values())
        if total <= 0:
            raise ValueError("At least one confidence weight must be positive.")
        return {name: value / total for name, value in raw.items()}


@dataclass(frozen=True)
class BandEpsilons:
    """Clustering radius (meters) chosen from the dominant accuracy band."""

    high: float = 2.0
    good: float = 12.0
    fair: float = 120.0

    def for_band(self, band: AccuracyBand) -> float:
        if band == AccuracyBand.HIGH:
            return self.high
        if band == AccuracyBand.GOOD:
            return self.good
        # Valid samples beyond the Fair band still cluster with the loosest radius
        return self.fair


@dataclass(frozen=True)
class EngineConfig:
    """Hosting configuration for a pass; defaults mirror the service settings."""

    weights: ConfidenceWeights = field(default_factory=ConfidenceWeights)
    band_epsilons: BandEpsilons = field(default_factory=BandEpsilons)
    rejection_ceiling_meters: float = 100.0
    target_span_hours: float = 2.0
    temporal_min_span_minutes: float = 30.0
    burst_min_members: int = 10
    outlier_sigma: float = 3.0
    sparse_sample_threshold: int = 100
    min_checkins_for_discovery: int = 50


@dataclass(frozen=True)
class ScoreBreakdown:
    sample_size: float
    gps_accuracy: float
    category_purity: float
    spatial_consistency: float
    temporal_spread: float
    confidence: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "sample_size": round(self.sample_size, 4),
            "gps_accuracy": round(self.gps_accuracy, 4),
            "category_purity": round(self.category_purity, 4),
            "spatial_consistency": round(self.spatial_consistency, 4),
            "temporal_spread": round(self.temporal_spread, 4),
            "confidence": round(self.confidence, 4),
        }


@dataclass
class GateCandidate:
    """Ephemeral gate proposal produced fresh by every pass."""

    kind: GateKind
    member_ids: Tuple[int, ...]
    category_distribution: Dict[str, int]
    first_seen: datetime
    last_seen: datetime
    derivation_method: str
    centroid: Optional[Tuple[float, float]] = None
    avg_accuracy: Optional[float] = None
    accuracy_spread: Optional[float] = None
    epsilon_meters: Optional[float] = None
    accuracy_band: Optional[AccuracyBand] = None
    mean_member_distance: Optional[float] = None
    max_member_distance: Optional[float] = None
    outliers_removed: int = 0
    unique_attendees: int = 0
    active_hours: int = 0
    event_share: float = 0.0
    name: str = ""
    confidence: float = 0.0
    scores: Optional[ScoreBreakdown] = None

    @property
    def member_count(self) -> int:
        return len(self.member_ids)

    @property
    def dominant_category(self) -> str:
        if not self.category_distribution:
            return DEFAULT_CATEGORY
        # Ties resolve alphabetically so repeated passes name gates identically
        return min(
            self.category_distribution.items(),
            key=lambda item: (-item[1], item[0]),
        )[0]

    @property
    def dominant_share(self) -> float:
        total = sum(self.category_distribution.values())
        if not total:
            return 0.0
        return self.category_distribution[self.dominant_category] / total

    @property
    def temporal_span_hours(self) -> float:
        return (self.last_seen - self.first_seen).total_seconds() / 3600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "latitude": self.centroid[0] if self.centroid else None,
            "longitude": self.centroid[1] if self.centroid else None,
            "member_count": self.member_count,
            "dominant_category": self.dominant_category,
            "category_distribution": dict(self.category_distribution),
            "avg_accuracy": round(self.avg_accuracy, 2) if self.avg_accuracy is not None else None,
            "accuracy_spread": round(self.accuracy_spread, 2) if self.accuracy_spread is not None else None,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "temporal_span_hours": round(self.temporal_span_hours, 2),
            "active_hours": self.active_hours,
            "unique_attendees": self.unique_attendees,
            "epsilon_meters": self.epsilon_meters,
            "accuracy_band": self.accuracy_band.value if self.accuracy_band else None,
            "outliers_removed": self.outliers_removed,
            "confidence": round(self.confidence, 4),
            "scores": self.scores.to_dict() if self.scores else None,
            "derivation_method": self.derivation_method,
        }
