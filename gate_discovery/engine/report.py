"""
Quality Reporter

Cheap, side-effect free summary of whether an event has enough data for
gate discovery and which strategy it would get. Insufficient data shows up
here as ``sufficient_data=False`` plus a recommendation to wait.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from gate_discovery.engine.arbiter import ArbiterDecision
from gate_discovery.engine.gps_quality import accuracy_band, gps_quality_score
from gate_discovery.engine.types import (
    AccuracyBand,
    CheckinSample,
    EngineConfig,
    GateCandidate,
    GateKind,
    Thresholds,
)

LOW_GOOD_GPS_COUNT = 10

NEXT_STEPS = [
    "Preview gate discovery to inspect candidate gates",
    "Review gate confidence scores and adjust thresholds if needed",
    "Run the gate pipeline to materialize gates",
    "Assign orphaned check-ins to the discovered gates",
    "Monitor gate performance and adjust as the event progresses",
]


def gps_quality_label(avg_accuracy: Optional[float]) -> str:
    if avg_accuracy is None:
        return "no_gps_data"
    if avg_accuracy <= 15:
        return "excellent"
    if avg_accuracy <= 30:
        return "good"
    if avg_accuracy <= 50:
        return "fair"
    return "poor"


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


@dataclass
class QualityReport:
    event_id: str
    total_checkins: int
    checkins_with_gps: int
    quality_samples: int
    checkins_with_good_gps: int
    avg_accuracy: Optional[float]
    location_spread_meters: float
    physical_candidates: int
    virtual_candidates: int
    recommended_strategy: str
    strategy_reason: str
    can_enforce_gates: bool
    sufficient_data: bool
    avg_checkins_per_gate: float
    avg_gps_quality_score: float = 0.0
    recommendations: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)

    @property
    def gps_coverage_pct(self) -> float:
        return _pct(self.quality_samples, self.total_checkins)

    @property
    def gps_quality(self) -> str:
        return gps_quality_label(self.avg_accuracy)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "total_checkins": self.total_checkins,
            "sufficient_data": self.sufficient_data,
            "data_quality": {
                "checkins_with_gps": self.checkins_with_gps,
                "checkins_with_gps_pct": _pct(self.checkins_with_gps, self.total_checkins),
                "quality_samples": self.quality_samples,
                "gps_coverage_pct": self.gps_coverage_pct,
                "checkins_with_good_gps": self.checkins_with_good_gps,
                "checkins_with_good_gps_pct": _pct(self.checkins_with_good_gps, self.total_checkins),
                "avg_gps_accuracy_meters": (
                    round(self.avg_accuracy, 2) if self.avg_accuracy is not None else None
                ),
                "location_spread_meters": round(self.location_spread_meters, 2),
                "gps_quality": self.gps_quality,
                "avg_gps_quality_score": round(self.avg_gps_quality_score, 4),
            },
            "gate_discovery": {
                "physical_candidates": self.physical_candidates,
                "virtual_candidates": self.virtual_candidates,
                "recommended_strategy": self.recommended_strategy,
                "strategy_reason": self.strategy_reason,
                "can_enforce_gates": self.can_enforce_gates,
                "avg_checkins_per_gate": round(self.avg_checkins_per_gate, 2),
            },
            "recommendations": list(self.recommendations),
            "next_steps": list(self.next_steps),
        }


def build_quality_report(
    event_id: str,
    checkins: Sequence[CheckinSample],
    quality_samples: Sequence[CheckinSample],
    physical: Sequence[GateCandidate],
    virtual: Sequence[GateCandidate],
    decision: ArbiterDecision,
    thresholds: Thresholds,
    config: EngineConfig
) -> QualityReport:
    total = len(checkins)
    with_gps = sum(1 for c in checkins if c.has_location)
    good = sum(
        1 for s in quality_samples
        if accuracy_band(s.accuracy) in (AccuracyBand.HIGH, AccuracyBand.GOOD)
    )
    avg_accuracy = (
        float(np.mean([s.accuracy for s in quality_samples])) if quality_samples else None
    )
    # Check-ins without GPS score 0
    avg_score = (
        float(np.mean([gps_quality_score(c.accuracy if c.has_location else None) for c in checkins]))
        if checkins else 0.0
    )

    winners = physical if decision.strategy == GateKind.PHYSICAL else virtual
    best_winner = max((c.confidence for c in winners), default=0.0)
    can_enforce = bool(winners) and best_winner >= thresholds.confidence_threshold
    sufficient = total >= config.min_checkins_for_discovery

    recommendations = []
    if not sufficient:
        recommendations.append(
            f"Need at least {config.min_checkins_for_discovery} check-ins for reliable "
            f"gate discovery ({total} so far) - wait for more check-ins"
        )
    if total and good < LOW_GOOD_GPS_COUNT:
        recommendations.append("GPS data quality too low - consider virtual gates")
    if not physical and not virtual:
        recommendations.append("Unable to discover any gates - check data quality")
    if len(physical) == 1:
        recommendations.append("Only one physical gate found - may need more data")
    if quality_samples and decision.location_spread_meters <= thresholds.max_location_variance_meters:
        recommendations.append("All check-ins at the same location - virtual gates recommended")
    if not recommendations:
        recommendations.append(
            f"Gate discovery ready - {len(winners)} {decision.strategy.value} gates available"
        )

    return QualityReport(
        event_id=event_id,
        total_checkins=total,
        checkins_with_gps=with_gps,
        quality_samples=len(quality_samples),
        checkins_with_good_gps=good,
        avg_accuracy=avg_accuracy,
        location_spread_meters=decision.location_spread_meters,
        physical_candidates=len(physical),
        virtual_candidates=len(virtual),
        recommended_strategy=decision.strategy.value,
        strategy_reason=decision.reason,
        can_enforce_gates=can_enforce,
        sufficient_data=sufficient,
        avg_checkins_per_gate=total / len(winners) if winners else 0.0,
        avg_gps_quality_score=avg_score,
        recommendations=recommendations,
        next_steps=list(NEXT_STEPS),
    )
