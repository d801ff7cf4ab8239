import pytest
from scenarios import BASE_TIME, GATE_A, offset_north

from gate_discovery.db.models import CheckinEvent, Gate, GateMergeSuggestion
from gate_discovery.engine.types import Thresholds
from gate_discovery.services.duplicate_service import (
    MERGE_METHOD,
    STATUS_MERGED,
    STATUS_PENDING,
    STATUS_REJECTED,
    DuplicateService,
    category_overlap,
    merge_confidence,
)


def _make_gate(db, point, distribution=None, kind="physical", status="probation") -> Gate:
    distribution = distribution or {"General": 10}
    gate = Gate(
        event_id="festival",
        kind=kind,
        name="General Gate",
        latitude=point[0],
        longitude=point[1],
        dominant_category=max(distribution, key=distribution.get),
        category_distribution=distribution,
        confidence=0.9,
        status=status,
        member_count=sum(distribution.values()),
    )
    db.add(gate)
    db.commit()
    return gate


def _assign_checkins(db, gate, count) -> None:
    for _ in range(count):
        db.add(CheckinEvent(
            event_id="festival",
            category="General",
            timestamp=BASE_TIME,
            latitude=gate.latitude,
            longitude=gate.longitude,
            accuracy_meters=10.0,
            status="success",
            gate_id=gate.id,
            assignment_method="gps_haversine",
        ))
    db.commit()


def test_category_overlap() -> None:
    assert category_overlap({"General": 10}, {"General": 3}) == pytest.approx(1.0)
    assert category_overlap({"General": 10}, {"VIP": 3}) == 0.0
    assert category_overlap({"General": 5, "VIP": 5}, {"General": 10}) == pytest.approx(0.5)
    assert category_overlap(None, {"General": 1}) == 0.0
    assert category_overlap({}, {"General": 1}) == 0.0


def test_merge_confidence_weighs_closeness_and_overlap() -> None:
    assert merge_confidence(0.0, 25.0, 1.0) == 1.0
    assert merge_confidence(25.0, 25.0, 0.0) == 0.0
    assert merge_confidence(12.5, 25.0, 0.5) == pytest.approx(0.5)


def test_close_gates_produce_one_pending_suggestion(db_session) -> None:
    primary = _make_gate(db_session, GATE_A)
    secondary = _make_gate(db_session, offset_north(GATE_A, 8.0))
    service = DuplicateService()

    result = service.detect(db_session, "festival", Thresholds())

    assert result["duplicate_pairs"] == 1
    assert result["suggestions_created"] == 1
    suggestion = db_session.query(GateMergeSuggestion).one()
    assert suggestion.primary_gate_id == primary.id
    assert suggestion.secondary_gate_id == secondary.id
    assert suggestion.status == STATUS_PENDING
    assert suggestion.confidence == pytest.approx(0.776, abs=1e-3)
    assert "apart" in suggestion.reasoning


def test_detection_is_idempotent(db_session) -> None:
    _make_gate(db_session, GATE_A)
    _make_gate(db_session, offset_north(GATE_A, 8.0))
    service = DuplicateService()

    service.detect(db_session, "festival", Thresholds())
    again = service.detect(db_session, "festival", Thresholds())

    assert again["suggestions_created"] == 0
    assert again["suggestions_refreshed"] == 1
    assert again["pending_suggestions"] == 1
    assert db_session.query(GateMergeSuggestion).count() == 1


def test_distant_and_archived_gates_are_not_flagged(db_session) -> None:
    _make_gate(db_session, GATE_A)
    _make_gate(db_session, offset_north(GATE_A, 30.0))
    _make_gate(db_session, offset_north(GATE_A, 2.0), status="archived")

    result = DuplicateService().detect(db_session, "festival", Thresholds())

    assert result["duplicate_pairs"] == 0
    assert result["pending_suggestions"] == 0


def test_approving_merges_secondary_into_primary(db_session) -> None:
    primary = _make_gate(db_session, GATE_A, {"General": 10})
    secondary = _make_gate(db_session, offset_north(GATE_A, 8.0), {"General": 4, "VIP": 2})
    _assign_checkins(db_session, secondary, 6)
    service = DuplicateService()
    service.detect(db_session, "festival", Thresholds())
    suggestion = db_session.query(GateMergeSuggestion).one()

    result = service.resolve(db_session, suggestion.id, approve=True, reviewed_by="ops@example.com")

    assert result["success"]
    assert result["checkins_reassigned"] == 6
    assert result["suggestion"]["status"] == STATUS_MERGED
    db_session.refresh(primary)
    db_session.refresh(secondary)
    assert secondary.status == "archived"
    assert primary.member_count == 16
    assert primary.category_distribution == {"General": 14, "VIP": 2}
    moved = db_session.query(CheckinEvent).filter(CheckinEvent.gate_id == primary.id).all()
    assert len(moved) == 6
    assert all(c.assignment_method == MERGE_METHOD for c in moved)


def test_merge_closes_other_pairings_of_absorbed_gate(db_session) -> None:
    _make_gate(db_session, GATE_A)
    _make_gate(db_session, offset_north(GATE_A, 8.0))
    _make_gate(db_session, offset_north(GATE_A, 16.0))
    service = DuplicateService()
    service.detect(db_session, "festival", Thresholds())
    assert service.count_pending(db_session, "festival") == 3

    first_pair = db_session.query(GateMergeSuggestion).order_by(GateMergeSuggestion.id).first()
    service.resolve(db_session, first_pair.id, approve=True)

    remaining = service.list_suggestions(db_session, "festival")
    assert len(remaining) == 1
    assert first_pair.secondary_gate_id not in (
        remaining[0]["primary_gate_id"], remaining[0]["secondary_gate_id"]
    )
    closed = service.list_suggestions(db_session, "festival", status=STATUS_REJECTED)
    assert [s["reviewed_by"] for s in closed] == ["system:merged"]


def test_rejecting_keeps_both_gates(db_session) -> None:
    _make_gate(db_session, GATE_A)
    secondary = _make_gate(db_session, offset_north(GATE_A, 8.0))
    service = DuplicateService()
    service.detect(db_session, "festival", Thresholds())
    suggestion = db_session.query(GateMergeSuggestion).one()

    result = service.resolve(db_session, suggestion.id, approve=False)

    assert result["suggestion"]["status"] == STATUS_REJECTED
    assert result["checkins_reassigned"] == 0
    db_session.refresh(secondary)
    assert secondary.status == "probation"
    # A rejected pair is not proposed again
    assert service.detect(db_session, "festival", Thresholds())["suggestions_created"] == 0


def test_resolving_twice_or_unknown(db_session) -> None:
    _make_gate(db_session, GATE_A)
    _make_gate(db_session, offset_north(GATE_A, 8.0))
    service = DuplicateService()
    service.detect(db_session, "festival", Thresholds())
    suggestion = db_session.query(GateMergeSuggestion).one()
    service.resolve(db_session, suggestion.id, approve=False)

    assert service.resolve(db_session, suggestion.id, approve=True) == {
        "success": False, "error": "already_rejected"
    }
    assert service.resolve(db_session, 9999, approve=True) == {
        "success": False, "error": "not_found"
    }


def test_policy_auto_approves_selected_suggestions(db_session) -> None:
    _make_gate(db_session, GATE_A)
    _make_gate(db_session, offset_north(GATE_A, 8.0))
    _make_gate(db_session, offset_north(GATE_A, 500.0))
    _make_gate(db_session, offset_north(GATE_A, 520.0), {"VIP": 10})
    service = DuplicateService()
    service.detect(db_session, "festival", Thresholds())

    merged = service.apply_policy(db_session, "festival", lambda s: s.confidence >= 0.7)

    assert merged == 1
    assert service.count_pending(db_session, "festival") == 1
