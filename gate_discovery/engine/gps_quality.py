"""
GPS Quality Filter

Decides whether a location claim is usable and which accuracy band it
falls into:
- High: <= 15m
- Good: <= 30m
- Fair: <= 50m
- Rejected: > 50m or invalid

Samples up to the rejection ceiling (100m by default) stay usable for
clustering even though their band reads Rejected.
"""
import math
from dataclasses import dataclass
from typing import Optional

from gate_discovery.engine.types import AccuracyBand

HIGH_MAX_METERS = 15.0
GOOD_MAX_METERS = 30.0
FAIR_MAX_METERS = 50.0
DEFAULT_REJECTION_CEILING_METERS = 100.0

# "Null island" and its neighbourhood is a common failure value from devices
NEAR_ZERO_DEGREES = 0.0001


@dataclass(frozen=True)
class GPSQuality:
    is_valid: bool
    band: AccuracyBand
    reason: Optional[str] = None


def accuracy_band(accuracy: Optional[float]) -> AccuracyBand:
    if accuracy is None or not math.isfinite(accuracy) or accuracy <= 0:
        return AccuracyBand.REJECTED
    if accuracy <= HIGH_MAX_METERS:
        return AccuracyBand.HIGH
    if accuracy <= GOOD_MAX_METERS:
        return AccuracyBand.GOOD
    if accuracy <= FAIR_MAX_METERS:
        return AccuracyBand.FAIR
    return AccuracyBand.REJECTED


def classify_gps(
    lat: Optional[float],
    lon: Optional[float],
    accuracy: Optional[float],
    rejection_ceiling: float = DEFAULT_REJECTION_CEILING_METERS
) -> GPSQuality:
    """Validate one location claim and report its accuracy band."""
    if lat is None or lon is None:
        return GPSQuality(False, AccuracyBand.REJECTED, "missing_coordinates")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return GPSQuality(False, AccuracyBand.REJECTED, "non_finite_coordinates")
    if not -90 <= lat <= 90 or not -180 <= lon <= 180:
        return GPSQuality(False, AccuracyBand.REJECTED, "out_of_range")
    if abs(lat) < NEAR_ZERO_DEGREES and abs(lon) < NEAR_ZERO_DEGREES:
        return GPSQuality(False, AccuracyBand.REJECTED, "null_island")
    if accuracy is None:
        return GPSQuality(False, AccuracyBand.REJECTED, "missing_accuracy")
    if not math.isfinite(accuracy) or accuracy <= 0:
        return GPSQuality(False, AccuracyBand.REJECTED, "invalid_accuracy")
    if accuracy > rejection_ceiling:
        return GPSQuality(False, AccuracyBand.REJECTED, "accuracy_above_ceiling")
    
    return GPSQuality(True, accuracy_band(accuracy))


def is_valid_gps(
    lat: Optional[float],
    lon: Optional[float],
    accuracy: Optional[float],
    rejection_ceiling: float = DEFAULT_REJECTION_CEILING_METERS
) -> bool:
    return classify_gps(lat, lon, accuracy, rejection_ceiling).is_valid


def gps_quality_score(accuracy: Optional[float]) -> float:
    """Per-sample quality score used for reporting."""
    if accuracy is None or accuracy <= 0:
        return 0.0
    if accuracy <= 10:
        return 1.0
    if accuracy <= 20:
        return 0.9
    if accuracy <= 30:
        return 0.8
    if accuracy <= 50:
        return 0.6
    return 0.4
