"""Check-in sets shared by the engine and pipeline tests."""
from datetime import datetime, timedelta
from typing import List, Optional

from gate_discovery.engine.geo import METERS_PER_DEGREE_LAT
from gate_discovery.engine.types import CheckinSample

BASE_TIME = datetime(2026, 7, 1, 12, 0, 0)
GATE_A = (51.5000, -0.1200)


def offset_north(point, meters: float):
    return (point[0] + meters / METERS_PER_DEGREE_LAT, point[1])


GATE_B = offset_north(GATE_A, 200.0)


def make_sample(
    checkin_id: int,
    point=None,
    accuracy: Optional[float] = 10.0,
    category: str = "General",
    minutes: float = 0.0,
    wristband_id: Optional[str] = None,
) -> CheckinSample:
    lat, lon = point if point else (None, None)
    return CheckinSample(
        checkin_id=checkin_id,
        category=category,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        wristband_id=wristband_id or f"WB-{checkin_id:05d}",
        latitude=lat,
        longitude=lon,
        accuracy=accuracy if point else None,
    )


def two_gate_event() -> List[CheckinSample]:
    """60 check-ins at 10m accuracy, alternating between two points 200m apart over 3 hours."""
    return [
        make_sample(i + 1, GATE_A if i % 2 == 0 else GATE_B, 10.0, "General", minutes=i * 3)
        for i in range(60)
    ]


def indoor_event() -> List[CheckinSample]:
    """40 check-ins without GPS, split across three categories."""
    categories = ["General", "VIP", "Staff"]
    return [
        make_sample(i + 1, None, None, categories[i % 3], minutes=i * 4)
        for i in range(40)
    ]


def sparse_event() -> List[CheckinSample]:
    """Five check-ins: four at one spot over 40 minutes, one stray 300m away."""
    samples = [make_sample(i + 1, GATE_A, 10.0, minutes=i * 13) for i in range(4)]
    samples.append(make_sample(5, offset_north(GATE_A, 300.0), 10.0, minutes=45))
    return samples


def multi_gate_event(points, per_point: int = 30, accuracy: float = 10.0) -> List[CheckinSample]:
    """per_point check-ins at each point, interleaved, three minutes apart."""
    total = per_point * len(points)
    return [
        make_sample(i + 1, points[i % len(points)], accuracy, minutes=i * 3)
        for i in range(total)
    ]


def as_payload(event_id: str, sample: CheckinSample) -> dict:
    """Ingestion payload carrying the same facts as the sample."""
    return {
        "event_id": event_id,
        "wristband_id": sample.wristband_id,
        "category": sample.category,
        "timestamp": sample.timestamp.isoformat(),
        "latitude": sample.latitude,
        "longitude": sample.longitude,
        "accuracy": sample.accuracy,
    }
