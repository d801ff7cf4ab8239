"""
Outlier Rejector

Drops members whose distance from the region centroid lies more than
``sigma`` standard deviations above the mean member distance. Rejection
repeats until nothing more is removed, so the output is a fixed point:
feeding it back in removes nothing.
"""
from typing import List, Sequence, Tuple

import numpy as np

from gate_discovery.engine.geo import centroid, distances_from
from gate_discovery.engine.types import CheckinSample

MIN_SAMPLES_FOR_REJECTION = 4
DEFAULT_SIGMA = 3.0


def reject_outliers(
    samples: Sequence[CheckinSample],
    sigma: float = DEFAULT_SIGMA
) -> Tuple[List[CheckinSample], List[CheckinSample]]:
    """Split located samples into (kept, removed)."""
    kept = list(samples)
    removed: List[CheckinSample] = []
    
    while len(kept) >= MIN_SAMPLES_FOR_REJECTION:
        points = [s.point for s in kept]
        distances = np.array(distances_from(centroid(points), points))
        spread = float(distances.std())
        if spread == 0.0:
            break
        
        mask = (distances - distances.mean()) > sigma * spread
        if not mask.any():
            break
        
        removed.extend(s for s, is_outlier in zip(kept, mask) if is_outlier)
        kept = [s for s, is_outlier in zip(kept, mask) if not is_outlier]
    
    return kept, removed
