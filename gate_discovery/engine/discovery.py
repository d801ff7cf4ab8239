"""
Discovery pass

A pure function of (check-in snapshot, thresholds, config):
1. GPS quality filtering
2. Adaptive clustering into physical candidates
3. Virtual candidates, one per category
4. Confidence scoring and naming
5. Strategy arbitration
6. Quality report

Nothing here touches the database; services persist the winners.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from gate_discovery.engine.arbiter import ArbiterDecision, decide_strategy
from gate_discovery.engine.clustering import ClusteringResult, cluster_samples, summarize_cluster
from gate_discovery.engine.errors import ComputationError, validate_event_id
from gate_discovery.engine.geo import location_spread
from gate_discovery.engine.gps_quality import is_valid_gps
from gate_discovery.engine.naming import gate_name
from gate_discovery.engine.report import QualityReport, build_quality_report
from gate_discovery.engine.scoring import score_candidate
from gate_discovery.engine.types import (
    CheckinSample,
    EngineConfig,
    GateCandidate,
    GateKind,
    Thresholds,
)
from gate_discovery.engine.virtual import group_by_category, summarize_category

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    event_id: str
    decision: ArbiterDecision
    physical_candidates: List[GateCandidate]
    virtual_candidates: List[GateCandidate]
    clustering: ClusteringResult
    report: QualityReport
    snapshot_checkin_ids: List[int] = field(default_factory=list)
    dropped_candidates: int = 0

    @property
    def strategy(self) -> GateKind:
        return self.decision.strategy

    @property
    def winners(self) -> List[GateCandidate]:
        if self.strategy == GateKind.PHYSICAL:
            return self.physical_candidates
        return self.virtual_candidates

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "strategy": self.strategy.value,
            "decision": self.decision.to_dict(),
            "clustering": {
                "accuracy_band": self.clustering.band.value,
                "epsilon_meters": self.clustering.epsilon_meters,
                "noise_checkins": self.clustering.noise_count,
                "discarded_small": self.clustering.discarded_small,
                "discarded_temporal": self.clustering.discarded_temporal,
                "dropped_candidates": self.dropped_candidates,
            },
            "physical_candidates": [c.to_dict() for c in self.physical_candidates],
            "virtual_candidates": [c.to_dict() for c in self.virtual_candidates],
            "quality_report": self.report.to_dict(),
        }


def _finish(
    candidate: GateCandidate,
    thresholds: Thresholds,
    config: EngineConfig
) -> GateCandidate:
    score_candidate(candidate, thresholds, config)
    candidate.name = gate_name(candidate)
    return candidate


def _build_candidates(
    event_id: str,
    builders: Sequence[Callable[[], GateCandidate]],
    thresholds: Thresholds,
    config: EngineConfig
) -> Tuple[List[GateCandidate], int]:
    candidates = []
    dropped = 0
    for build in builders:
        try:
            candidates.append(_finish(build(), thresholds, config))
        except ComputationError as e:
            dropped += 1
            logger.warning(f"Dropping candidate for event {event_id}: {e}")
    # Strongest evidence first; ties broken by location/category for stable output
    candidates.sort(key=lambda c: (
        -c.confidence,
        -c.member_count,
        c.centroid or (0.0, 0.0),
        c.dominant_category,
    ))
    return candidates, dropped


def discover_gates(
    event_id: str,
    checkins: Sequence[CheckinSample],
    thresholds: Optional[Thresholds] = None,
    config: Optional[EngineConfig] = None
) -> DiscoveryResult:
    """Run one discovery pass over a check-in snapshot."""
    event_id = validate_event_id(event_id)
    thresholds = thresholds or Thresholds()
    config = config or EngineConfig()

    quality = [
        c for c in checkins
        if is_valid_gps(c.latitude, c.longitude, c.accuracy, config.rejection_ceiling_meters)
    ]
    logger.debug(f"Event {event_id}: {len(quality)}/{len(checkins)} check-ins with usable GPS")

    clustering = cluster_samples(quality, thresholds, config)
    physical_builders = [
        (lambda m=members, r=removed: summarize_cluster(
            m, clustering.epsilon_meters, clustering.band, r
        ))
        for members, removed in clustering.clusters
    ]
    physical, dropped_physical = _build_candidates(
        event_id, physical_builders, thresholds, config
    )

    groups = group_by_category(checkins, thresholds)
    virtual_builders = [
        (lambda c=category, m=members: summarize_category(
            c, m, len(checkins), config.rejection_ceiling_meters
        ))
        for category, members in groups.items()
    ]
    virtual, dropped_virtual = _build_candidates(
        event_id, virtual_builders, thresholds, config
    )

    spread = location_spread([q.point for q in quality])
    decision = decide_strategy(
        physical, virtual, spread, len(quality), len(checkins), thresholds, config
    )
    report = build_quality_report(
        event_id, checkins, quality, physical, virtual, decision, thresholds, config
    )

    logger.info(
        f"Discovery for event {event_id}: {decision.strategy.value} "
        f"({decision.reason}), {len(physical)} physical / {len(virtual)} virtual candidates"
    )

    return DiscoveryResult(
        event_id=event_id,
        decision=decision,
        physical_candidates=physical,
        virtual_candidates=virtual,
        clustering=clustering,
        report=report,
        snapshot_checkin_ids=sorted(c.checkin_id for c in checkins),
        dropped_candidates=dropped_physical + dropped_virtual,
    )
