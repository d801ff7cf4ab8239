from scenarios import BASE_TIME, GATE_A, offset_north

from gate_discovery.db.models import CheckinEvent, Gate
from gate_discovery.engine.types import GateKind
from gate_discovery.services.orphan_service import METHOD_CATEGORY, METHOD_GPS, OrphanService


def _make_gate(db, point=GATE_A, kind="physical", category="General", status="probation",
               confidence=0.9) -> Gate:
    gate = Gate(
        event_id="festival",
        kind=kind,
        name=f"{category} Gate",
        latitude=point[0] if point else None,
        longitude=point[1] if point else None,
        dominant_category=category,
        category_distribution={category: 10},
        confidence=confidence,
        status=status,
    )
    db.add(gate)
    db.commit()
    return gate


def _make_checkin(db, point=None, accuracy=10.0, category="General", event_id="festival") -> CheckinEvent:
    checkin = CheckinEvent(
        event_id=event_id,
        category=category,
        timestamp=BASE_TIME,
        latitude=point[0] if point else None,
        longitude=point[1] if point else None,
        accuracy_meters=accuracy if point else None,
        status="success",
    )
    db.add(checkin)
    db.commit()
    return checkin


def test_nearby_checkin_is_assigned_with_distance_confidence(db_session) -> None:
    gate = _make_gate(db_session)
    checkin = _make_checkin(db_session, offset_north(GATE_A, 10.0))

    result = OrphanService(50.0, 0.6).assign_orphans(db_session, "festival", GateKind.PHYSICAL)
    db_session.refresh(checkin)

    assert result["checkins_assigned"] == 1
    assert result["orphans_remaining"] == 0
    assert checkin.gate_id == gate.id
    assert checkin.assignment_method == METHOD_GPS
    assert abs(checkin.assignment_confidence - 0.8) < 0.01
    assert checkin.assigned_at is not None


def test_low_confidence_match_is_refused(db_session) -> None:
    _make_gate(db_session)
    checkin = _make_checkin(db_session, offset_north(GATE_A, 30.0))

    result = OrphanService(50.0, 0.6).assign_orphans(db_session, "festival", GateKind.PHYSICAL)
    db_session.refresh(checkin)

    assert result["checkins_assigned"] == 0
    assert result["orphans_remaining"] == 1
    assert checkin.gate_id is None


def test_checkins_without_usable_gps_stay_orphaned(db_session) -> None:
    _make_gate(db_session)
    _make_checkin(db_session, None)
    _make_checkin(db_session, GATE_A, accuracy=500.0)

    result = OrphanService(50.0, 0.6).assign_orphans(db_session, "festival", GateKind.PHYSICAL)

    assert result["checkins_considered"] == 2
    assert result["checkins_assigned"] == 0
    assert result["orphans_remaining"] == 2


def test_archived_gates_are_ignored(db_session) -> None:
    _make_gate(db_session, status="archived")
    _make_checkin(db_session, GATE_A)

    result = OrphanService(50.0, 0.6).assign_orphans(db_session, "festival", GateKind.PHYSICAL)

    assert result["checkins_assigned"] == 0


def test_nearest_gate_wins(db_session) -> None:
    _make_gate(db_session, GATE_A)
    near = _make_gate(db_session, offset_north(GATE_A, 20.0))
    checkin = _make_checkin(db_session, offset_north(GATE_A, 15.0))

    OrphanService(50.0, 0.6).assign_orphans(db_session, "festival", GateKind.PHYSICAL)
    db_session.refresh(checkin)

    assert checkin.gate_id == near.id


def test_virtual_strategy_matches_by_category(db_session) -> None:
    vip = _make_gate(db_session, None, kind="virtual", category="VIP", confidence=0.72)
    _make_gate(db_session, None, kind="virtual", category="General")
    checkin = _make_checkin(db_session, None, category="VIP")
    stray = _make_checkin(db_session, None, category="Press")

    result = OrphanService(50.0, 0.6).assign_orphans(db_session, "festival", GateKind.VIRTUAL)
    db_session.refresh(checkin)
    db_session.refresh(stray)

    assert result["checkins_assigned"] == 1
    assert result["orphans_remaining"] == 1
    assert checkin.gate_id == vip.id
    assert checkin.assignment_method == METHOD_CATEGORY
    assert checkin.assignment_confidence == 0.72
    assert stray.gate_id is None


def test_snapshot_bound_leaves_later_checkins_alone(db_session) -> None:
    _make_gate(db_session)
    first = _make_checkin(db_session, GATE_A)
    later = _make_checkin(db_session, GATE_A)

    result = OrphanService(50.0, 0.6).assign_orphans(
        db_session, "festival", GateKind.PHYSICAL, max_checkin_id=first.id
    )
    db_session.refresh(later)

    assert result["checkins_considered"] == 1
    assert later.gate_id is None


def test_assigned_checkins_are_not_reassigned(db_session) -> None:
    _make_gate(db_session)
    _make_checkin(db_session, GATE_A)
    service = OrphanService(50.0, 0.6)

    service.assign_orphans(db_session, "festival", GateKind.PHYSICAL)
    again = service.assign_orphans(db_session, "festival", GateKind.PHYSICAL)

    assert again["checkins_previously_assigned"] == 1
    assert again["checkins_assigned"] == 0


def test_no_active_strategy_assigns_nothing(db_session) -> None:
    _make_gate(db_session)
    _make_checkin(db_session, GATE_A)

    result = OrphanService(50.0, 0.6).assign_orphans(db_session, "festival", None)

    assert result["checkins_assigned"] == 0
    assert result["orphans_remaining"] == 1
