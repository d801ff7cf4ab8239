"""
Adaptive Clustering Engine

Density-based region growing (DBSCAN-style) over an explicit Haversine
adjacency test. The radius (epsilon) follows the dominant accuracy band of
the samples: precise data gets a tight radius, loose data a wide one so a
single true location does not fragment into many false clusters.

Coordinates are pre-bucketed on a degree grid sized from epsilon. The grid
only narrows which pairs get the exact distance test; membership is always
decided by haversine_distance.
"""
import logging
import math
from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import numpy as np

from gate_discovery.engine.errors import ComputationError
from gate_discovery.engine.geo import (
    centroid,
    distances_from,
    haversine_distance,
    meters_to_lat_degrees,
    meters_to_lon_degrees,
)
from gate_discovery.engine.gps_quality import accuracy_band
from gate_discovery.engine.outliers import reject_outliers
from gate_discovery.engine.types import (
    AccuracyBand,
    CheckinSample,
    EngineConfig,
    GateCandidate,
    GateKind,
    Thresholds,
)

logger = logging.getLogger(__name__)

DERIVATION_METHOD = "gps_dbscan_clustering"

# Looser bands win ties so ambiguous data does not fragment
_BAND_ORDER = {
    AccuracyBand.HIGH: 0,
    AccuracyBand.GOOD: 1,
    AccuracyBand.FAIR: 2,
    AccuracyBand.REJECTED: 3,
}


@dataclass
class ClusteringResult:
    band: AccuracyBand
    epsilon_meters: float
    clusters: List[Tuple[List[CheckinSample], int]] = field(default_factory=list)
    noise_count: int = 0
    discarded_small: int = 0
    discarded_temporal: int = 0


def dominant_band(samples: Sequence[CheckinSample]) -> AccuracyBand:
    """Most common accuracy band among the samples."""
    if not samples:
        return AccuracyBand.FAIR
    counts = Counter(accuracy_band(s.accuracy) for s in samples)
    return max(counts.items(), key=lambda item: (item[1], _BAND_ORDER[item[0]]))[0]


def bucket_precision(epsilon_meters: float) -> int:
    """Decimal places of rounding whose grid cell is at least epsilon wide."""
    if epsilon_meters <= 0:
        raise ValueError("epsilon must be positive")
    decimals = math.floor(math.log10(111_320.0 / epsilon_meters))
    return max(0, min(6, decimals))


class SpatialBuckets:
    """Degree grid used to shortlist neighbour candidates."""
    
    def __init__(self, samples: Sequence[CheckinSample], epsilon_meters: float):
        self.samples = samples
        self.epsilon = epsilon_meters
        self.cell = 10.0 ** -bucket_precision(epsilon_meters)
        self._grid: Dict[Tuple[int, int], List[int]] = defaultdict(list)
        for index, sample in enumerate(samples):
            self._grid[self._key(sample.latitude, sample.longitude)].append(index)
    
    def _key(self, lat: float, lon: float) -> Tuple[int, int]:
        return (math.floor(lat / self.cell), math.floor(lon / self.cell))
    
    def neighbors(self, index: int) -> List[int]:
        """Indices within epsilon of the sample (itself included), ascending."""
        sample = self.samples[index]
        lat_reach = math.ceil(meters_to_lat_degrees(self.epsilon) / self.cell)
        lon_reach = math.ceil(
            meters_to_lon_degrees(self.epsilon, abs(sample.latitude) + self.cell) / self.cell
        )
        row, col = self._key(sample.latitude, sample.longitude)
        
        found = []
        for d_row in range(-lat_reach, lat_reach + 1):
            for d_col in range(-lon_reach, lon_reach + 1):
                for other in self._grid.get((row + d_row, col + d_col), ()):
                    candidate = self.samples[other]
                    distance = haversine_distance(
                        sample.latitude, sample.longitude,
                        candidate.latitude, candidate.longitude
                    )
                    if distance <= self.epsilon:
                        found.append(other)
        return sorted(found)


def dbscan(
    samples: Sequence[CheckinSample],
    epsilon_meters: float,
    min_points: int
) -> Tuple[List[List[CheckinSample]], int]:
    """Group samples into density-connected regions. Returns (regions, noise count)."""
    buckets = SpatialBuckets(samples, epsilon_meters)
    unvisited = -1
    noise = -2
    labels = [unvisited] * len(samples)
    regions: List[List[int]] = []
    
    for index in range(len(samples)):
        if labels[index] != unvisited:
            continue
        seeds = buckets.neighbors(index)
        if len(seeds) < min_points:
            labels[index] = noise
            continue
        
        region_id = len(regions)
        members = [index]
        labels[index] = region_id
        queue = deque(seeds)
        while queue:
            current = queue.popleft()
            if labels[current] == noise:
                # Border point reached from a core point
                labels[current] = region_id
                members.append(current)
                continue
            if labels[current] != unvisited:
                continue
            labels[current] = region_id
            members.append(current)
            current_neighbors = buckets.neighbors(current)
            if len(current_neighbors) >= min_points:
                queue.extend(current_neighbors)
        regions.append(members)
    
    noise_count = sum(1 for label in labels if label == noise)
    return [[samples[i] for i in sorted(region)] for region in regions], noise_count


def is_temporally_consistent(
    members: Sequence[CheckinSample],
    min_span_minutes: float = 30.0,
    burst_min_members: int = 10
) -> bool:
    """Members span enough wall-clock time, or form a large enough burst."""
    if len(members) >= burst_min_members:
        return True
    if not members:
        return False
    timestamps = [m.timestamp for m in members]
    span_minutes = (max(timestamps) - min(timestamps)).total_seconds() / 60
    return span_minutes >= min_span_minutes


def cluster_samples(
    samples: Sequence[CheckinSample],
    thresholds: Thresholds,
    config: EngineConfig
) -> ClusteringResult:
    """Cluster quality-filtered samples into candidate regions.
    
    Each surviving entry in ``clusters`` is (members, outliers_removed).
    """
    ordered = sorted(samples, key=lambda s: (s.timestamp, s.checkin_id))
    band = dominant_band(ordered)
    epsilon = config.band_epsilons.for_band(band)
    result = ClusteringResult(band=band, epsilon_meters=epsilon)
    if not ordered:
        return result
    
    min_points = max(1, thresholds.min_checkins_for_gate)
    regions, result.noise_count = dbscan(ordered, epsilon, min_points)
    
    for region in regions:
        kept, removed = reject_outliers(region, config.outlier_sigma)
        if len(kept) < thresholds.min_checkins_for_gate:
            result.discarded_small += 1
            continue
        if not is_temporally_consistent(
            kept, config.temporal_min_span_minutes, config.burst_min_members
        ):
            result.discarded_temporal += 1
            continue
        result.clusters.append((kept, len(removed)))
    
    logger.debug(
        f"Clustered {len(ordered)} samples with eps={epsilon}m ({band.value}): "
        f"{len(result.clusters)} kept, {result.discarded_small} small, "
        f"{result.discarded_temporal} temporally inconsistent, {result.noise_count} noise"
    )
    return result


def summarize_cluster(
    members: Sequence[CheckinSample],
    epsilon_meters: float,
    band: AccuracyBand,
    outliers_removed: int = 0
) -> GateCandidate:
    """Centroid, category mix, accuracy and temporal statistics of a cluster."""
    if not members:
        raise ComputationError("Cluster has no members")
    
    points = [m.point for m in members]
    center = centroid(points)
    distances = np.array(distances_from(center, points))
    accuracies = np.array([m.accuracy for m in members], dtype=float)
    if not np.all(np.isfinite(distances)) or not np.all(np.isfinite(accuracies)):
        raise ComputationError("Non-finite statistics for cluster")
    
    timestamps = [m.timestamp for m in members]
    categories = Counter(m.category for m in members)
    
    return GateCandidate(
        kind=GateKind.PHYSICAL,
        member_ids=tuple(m.checkin_id for m in members),
        category_distribution=dict(sorted(categories.items())),
        first_seen=min(timestamps),
        last_seen=max(timestamps),
        derivation_method=DERIVATION_METHOD,
        centroid=center,
        avg_accuracy=float(accuracies.mean()),
        accuracy_spread=float(accuracies.std()),
        epsilon_meters=epsilon_meters,
        accuracy_band=band,
        mean_member_distance=float(distances.mean()),
        max_member_distance=float(distances.max()),
        outliers_removed=outliers_removed,
        unique_attendees=len({m.wristband_id for m in members if m.wristband_id}),
        active_hours=len({t.replace(minute=0, second=0, microsecond=0) for t in timestamps}),
    )
