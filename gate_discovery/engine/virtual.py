"""
Virtual Gate Deriver

One candidate per attendee category, regardless of location. Always
computable: check-ins without GPS still carry a category.
"""
from collections import defaultdict
from typing import Dict, List, Sequence

import numpy as np

from gate_discovery.engine.errors import ComputationError
from gate_discovery.engine.gps_quality import is_valid_gps
from gate_discovery.engine.types import (
    CheckinSample,
    GateCandidate,
    GateKind,
    Thresholds,
)

DERIVATION_METHOD = "virtual_category_based"


def group_by_category(
    checkins: Sequence[CheckinSample],
    thresholds: Thresholds
) -> Dict[str, List[CheckinSample]]:
    """Group check-ins by category; categories below the gate minimum are left out."""
    by_category: Dict[str, List[CheckinSample]] = defaultdict(list)
    for checkin in sorted(checkins, key=lambda c: (c.timestamp, c.checkin_id)):
        by_category[checkin.category].append(checkin)

    return {
        category: members
        for category, members in sorted(by_category.items())
        if len(members) >= thresholds.min_checkins_for_gate
    }


def summarize_category(
    category: str,
    members: Sequence[CheckinSample],
    event_total: int,
    rejection_ceiling: float = 100.0
) -> GateCandidate:
    if not members:
        raise ComputationError(f"Category {category} has no members")

    timestamps = [m.timestamp for m in members]
    accuracies = [
        m.accuracy for m in members
        if is_valid_gps(m.latitude, m.longitude, m.accuracy, rejection_ceiling)
    ]
    avg_accuracy = float(np.mean(accuracies)) if accuracies else None
    accuracy_spread = float(np.std(accuracies)) if accuracies else None

    return GateCandidate(
        kind=GateKind.VIRTUAL,
        member_ids=tuple(m.checkin_id for m in members),
        category_distribution={category: len(members)},
        first_seen=min(timestamps),
        last_seen=max(timestamps),
        derivation_method=DERIVATION_METHOD,
        avg_accuracy=avg_accuracy,
        accuracy_spread=accuracy_spread,
        unique_attendees=len({m.wristband_id for m in members if m.wristband_id}),
        active_hours=len({t.replace(minute=0, second=0, microsecond=0) for t in timestamps}),
        event_share=len(members) / event_total if event_total else 0.0,
    )
