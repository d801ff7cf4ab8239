"""
Decision Arbiter

Chooses exactly one strategy per pass. Physical wins only when there are
at least two physical candidates, the quality samples are genuinely spread
out, and the best physical candidate is confident enough. Everything else
is virtual, which is a valid outcome in its own right.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from gate_discovery.engine.types import EngineConfig, GateCandidate, GateKind, Thresholds

REASON_DISTINCT_LOCATIONS = "distinct_physical_locations_detected"
REASON_NO_PHYSICAL = "no_physical_gates_detected"
REASON_LOCATION_INVARIANT = "location_invariant_event"
REASON_SINGLE_LOCATION = "single_physical_location"
REASON_LOW_QUALITY = "insufficient_physical_gate_quality"

ADVISORY_SPARSE = "sparse_gps_samples"
ADVISORY_NO_COVERAGE = "near_zero_gps_coverage"

# Below this share of usable GPS the event is treated as having no coverage
NEAR_ZERO_COVERAGE = 0.05


@dataclass(frozen=True)
class ArbiterDecision:
    strategy: GateKind
    reason: str
    physical_candidates: int
    virtual_candidates: int
    best_physical_confidence: float
    location_spread_meters: float
    advisories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "reason": self.reason,
            "physical_candidates": self.physical_candidates,
            "virtual_candidates": self.virtual_candidates,
            "best_physical_confidence": round(self.best_physical_confidence, 4),
            "location_spread_meters": round(self.location_spread_meters, 2),
            "advisories": list(self.advisories),
        }


def decide_strategy(
    physical: Sequence[GateCandidate],
    virtual: Sequence[GateCandidate],
    location_spread_meters: float,
    quality_sample_count: int,
    total_checkins: int,
    thresholds: Thresholds,
    config: EngineConfig
) -> ArbiterDecision:
    best = max((c.confidence for c in physical), default=0.0)

    advisories = []
    if quality_sample_count < config.sparse_sample_threshold:
        advisories.append(ADVISORY_SPARSE)
    if total_checkins and quality_sample_count / total_checkins < NEAR_ZERO_COVERAGE:
        advisories.append(ADVISORY_NO_COVERAGE)

    if not physical:
        strategy, reason = GateKind.VIRTUAL, REASON_NO_PHYSICAL
    elif location_spread_meters <= thresholds.max_location_variance_meters:
        strategy, reason = GateKind.VIRTUAL, REASON_LOCATION_INVARIANT
    elif len(physical) < 2:
        strategy, reason = GateKind.VIRTUAL, REASON_SINGLE_LOCATION
    elif best < thresholds.confidence_threshold:
        strategy, reason = GateKind.VIRTUAL, REASON_LOW_QUALITY
    else:
        strategy, reason = GateKind.PHYSICAL, REASON_DISTINCT_LOCATIONS

    return ArbiterDecision(
        strategy=strategy,
        reason=reason,
        physical_candidates=len(physical),
        virtual_candidates=len(virtual),
        best_physical_confidence=best,
        location_spread_meters=location_spread_meters,
        advisories=advisories,
    )
