"""
Confidence Scorer

Five normalized sub-scores, combined by weighted average:
1. sample size  - member count relative to the target sample size
2. GPS accuracy - smaller reported accuracy scores higher
3. category purity - 1 - normalized entropy of the category mix
4. spatial consistency - member tightness relative to epsilon
   (virtual gates have no location; activity spread across hours stands in)
5. temporal spread - activity span relative to the target duration

Weights default to equal and come from the hosting configuration.
"""
import math
from typing import Dict, Optional

from gate_discovery.engine.types import (
    EngineConfig,
    GateCandidate,
    GateKind,
    ScoreBreakdown,
    Thresholds,
)

# Used when a candidate has no accuracy information at all (virtual gates
# of events without GPS)
NEUTRAL_SCORE = 0.5

# Confidence -> enforcement strength
ENFORCEMENT_BANDS = (
    (0.95, "strict"),
    (0.85, "moderate"),
    (0.75, "relaxed"),
    (0.65, "probation"),
)
NOT_RECOMMENDED = "none"


def enforcement_strength(confidence: float) -> str:
    for floor, strength in ENFORCEMENT_BANDS:
        if confidence >= floor:
            return strength
    return NOT_RECOMMENDED


def should_enforce(confidence: float) -> bool:
    return enforcement_strength(confidence) != NOT_RECOMMENDED


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def category_entropy(distribution: Dict[str, int]) -> float:
    """Shannon entropy (nats) of a category count distribution."""
    total = sum(distribution.values())
    if total <= 0:
        return 0.0
    entropy = 0.0
    for count in distribution.values():
        if count > 0:
            probability = count / total
            entropy -= probability * math.log(probability)
    return entropy


def category_purity(distribution: Dict[str, int]) -> float:
    """1 for a single category, 0 for a uniform mix."""
    present = [count for count in distribution.values() if count > 0]
    if len(present) <= 1:
        return 1.0
    return _clamp(1.0 - category_entropy(distribution) / math.log(len(present)))


def sample_size_score(count: int, target: int) -> float:
    """Log-scaled so early evidence counts but the target saturates it."""
    if count <= 0:
        return 0.0
    if target <= 1 or count >= target:
        return 1.0
    return _clamp(math.log1p(count) / math.log1p(target))


def gps_accuracy_score(avg_accuracy: Optional[float], ceiling_meters: float) -> float:
    if avg_accuracy is None:
        return NEUTRAL_SCORE
    return _clamp(1.0 - avg_accuracy / ceiling_meters)


def spatial_consistency_score(mean_distance: Optional[float], epsilon_meters: Optional[float]) -> float:
    if mean_distance is None or not epsilon_meters:
        return NEUTRAL_SCORE
    return _clamp(1.0 / (1.0 + mean_distance / epsilon_meters))


def temporal_spread_score(span_hours: float, target_hours: float) -> float:
    if target_hours <= 0:
        return 1.0
    return _clamp(span_hours / target_hours)


def activity_spread_score(active_hours: int, target_hours: float) -> float:
    """Distinct hours with activity relative to the target duration."""
    target = max(1, math.ceil(target_hours))
    return _clamp(active_hours / target)


def score_candidate(
    candidate: GateCandidate,
    thresholds: Thresholds,
    config: EngineConfig
) -> ScoreBreakdown:
    """Compute the sub-scores and overall confidence, storing both on the candidate."""
    weights = config.weights.normalized()
    
    if candidate.kind == GateKind.PHYSICAL:
        fourth = spatial_consistency_score(
            candidate.mean_member_distance, candidate.epsilon_meters
        )
    else:
        fourth = activity_spread_score(candidate.active_hours, config.target_span_hours)
    
    parts = {
        "sample_size": sample_size_score(
            candidate.member_count, thresholds.promotion_sample_size
        ),
        "gps_accuracy": gps_accuracy_score(
            candidate.avg_accuracy, config.rejection_ceiling_meters
        ),
        "category_purity": category_purity(candidate.category_distribution),
        "spatial_consistency": fourth,
        "temporal_spread": temporal_spread_score(
            candidate.temporal_span_hours, config.target_span_hours
        ),
    }
    confidence = _clamp(sum(weights[name] * value for name, value in parts.items()))
    
    breakdown = ScoreBreakdown(confidence=round(confidence, 6), **parts)
    candidate.scores = breakdown
    candidate.confidence = breakdown.confidence
    return breakdown
