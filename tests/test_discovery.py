import pytest
from scenarios import (
    GATE_A,
    indoor_event,
    make_sample,
    offset_north,
    sparse_event,
    two_gate_event,
)

from gate_discovery.engine import discovery
from gate_discovery.engine.arbiter import (
    ADVISORY_SPARSE,
    REASON_DISTINCT_LOCATIONS,
    REASON_LOCATION_INVARIANT,
    REASON_NO_PHYSICAL,
    REASON_SINGLE_LOCATION,
)
from gate_discovery.engine.discovery import discover_gates
from gate_discovery.engine.errors import ComputationError, InputError
from gate_discovery.engine.types import GateKind, Thresholds


def test_two_separated_gates_choose_physical() -> None:
    result = discover_gates("festival", two_gate_event())

    assert result.strategy == GateKind.PHYSICAL
    assert result.decision.reason == REASON_DISTINCT_LOCATIONS
    assert len(result.winners) == 2
    for candidate in result.winners:
        assert candidate.member_count == 30
        assert candidate.confidence >= 0.85
        assert candidate.derivation_method == "gps_dbscan_clustering"
    assert result.report.avg_gps_quality_score == 1.0
    assert result.report.can_enforce_gates


def test_indoor_event_without_gps_chooses_virtual_per_category() -> None:
    result = discover_gates("expo", indoor_event())

    assert result.strategy == GateKind.VIRTUAL
    assert result.decision.reason == REASON_NO_PHYSICAL
    assert sorted(c.dominant_category for c in result.winners) == ["General", "Staff", "VIP"]
    assert all(c.centroid is None for c in result.winners)
    assert all(0.0 <= c.confidence <= 1.0 for c in result.winners)
    assert result.report.gps_quality == "no_gps_data"
    assert result.report.avg_gps_quality_score == 0.0


def test_sparse_event_yields_one_candidate_and_asks_to_wait() -> None:
    result = discover_gates("tiny", sparse_event())

    assert len(result.physical_candidates) == 1
    assert result.physical_candidates[0].member_count == 4
    assert result.strategy == GateKind.VIRTUAL
    assert result.decision.reason == REASON_SINGLE_LOCATION
    assert not result.report.sufficient_data
    assert any("wait for more check-ins" in r for r in result.report.recommendations)
    assert ADVISORY_SPARSE in result.decision.advisories


def test_clusters_fifteen_meters_apart_are_physical() -> None:
    near_b = offset_north(GATE_A, 15.0)
    samples = [
        make_sample(i + 1, GATE_A if i % 2 == 0 else near_b, 5.0, minutes=i * 4)
        for i in range(60)
    ]
    result = discover_gates("close-gates", samples)

    assert result.strategy == GateKind.PHYSICAL
    assert len(result.physical_candidates) == 2


def test_single_location_is_virtual() -> None:
    offsets = [-1.0, 0.0, 1.0]
    samples = [
        make_sample(
            i + 1,
            offset_north(GATE_A, offsets[i % 3]),
            8.0,
            "VIP" if i % 2 else "General",
            minutes=i * 5,
        )
        for i in range(40)
    ]
    result = discover_gates("ballroom", samples)

    assert result.strategy == GateKind.VIRTUAL
    assert result.decision.reason == REASON_LOCATION_INVARIANT
    assert result.decision.location_spread_meters <= Thresholds().max_location_variance_meters
    assert any("same location" in r for r in result.report.recommendations)


def test_low_confidence_physical_falls_back_to_virtual() -> None:
    strict = Thresholds(confidence_threshold=0.99)
    result = discover_gates("strict", two_gate_event(), thresholds=strict)

    assert result.strategy == GateKind.VIRTUAL
    assert result.decision.reason == "insufficient_physical_gate_quality"


def test_discovery_is_deterministic() -> None:
    first = discover_gates("festival", two_gate_event()).to_dict()
    second = discover_gates("festival", list(reversed(two_gate_event()))).to_dict()

    assert first == second


def test_failing_candidate_is_dropped_not_fatal(monkeypatch) -> None:
    original = discovery.summarize_cluster
    calls = {"n": 0}

    def flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ComputationError("degenerate")
        return original(*args, **kwargs)

    monkeypatch.setattr(discovery, "summarize_cluster", flaky)
    result = discover_gates("festival", two_gate_event())

    assert result.dropped_candidates == 1
    assert len(result.physical_candidates) == 1


@pytest.mark.parametrize("event_id", [None, "", "   ", 42, "x" * 65])
def test_malformed_event_id_is_an_input_error(event_id) -> None:
    with pytest.raises(InputError):
        discover_gates(event_id, two_gate_event())


def test_empty_event_reports_instead_of_failing() -> None:
    result = discover_gates("empty", [])

    assert result.winners == []
    assert result.report.total_checkins == 0
    assert not result.report.sufficient_data
    assert "Unable to discover any gates - check data quality" in result.report.recommendations
