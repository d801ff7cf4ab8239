from scenarios import as_payload, make_sample

from gate_discovery.db.models import Gate
from gate_discovery.services.checkin_service import checkin_service
from gate_discovery.services.scheduler_service import (
    TASK_ORPHANS,
    TASK_PIPELINE,
    TRIGGER_INITIAL,
    TRIGGER_REFRESH,
    scheduler_service,
)


def _ingest(db, count, start=0, event_id="festival") -> None:
    checkin_service.record_batch(db, [
        as_payload(event_id, make_sample(start + i + 1, None, minutes=start + i))
        for i in range(count)
    ])


def _add_gate(db, event_id="festival") -> None:
    db.add(Gate(
        event_id=event_id,
        kind="virtual",
        name="General Gate",
        dominant_category="General",
        confidence=0.8,
        status="probation",
    ))
    db.commit()


def test_nothing_due_below_initial_milestone(db_session, dispatcher) -> None:
    _ingest(db_session, 24)

    scheduled = scheduler_service.on_checkins_recorded(db_session, "festival")

    assert scheduled == {"pipeline": None, "orphan_sweep": False}
    assert dispatcher.calls == []


def test_initial_pass_at_milestone(db_session, dispatcher) -> None:
    _ingest(db_session, 25)

    scheduled = scheduler_service.on_checkins_recorded(db_session, "festival")

    assert scheduled["pipeline"] == TRIGGER_INITIAL
    assert dispatcher.tasks(TASK_PIPELINE) == [
        (TASK_PIPELINE, "festival", {"trigger": TRIGGER_INITIAL})
    ]
    assert scheduler_service.get_state(db_session, "festival").last_pass_checkin_count == 25


def test_large_batch_cannot_skip_a_milestone(db_session, dispatcher) -> None:
    _ingest(db_session, 400)

    scheduled = scheduler_service.on_checkins_recorded(db_session, "festival")

    assert scheduled["pipeline"] == TRIGGER_INITIAL
    assert scheduler_service.get_state(db_session, "festival").last_pass_checkin_count == 400


def test_refresh_after_further_checkins(db_session, dispatcher) -> None:
    _ingest(db_session, 25)
    scheduler_service.on_checkins_recorded(db_session, "festival")
    _add_gate(db_session)

    _ingest(db_session, 99, start=25)
    assert scheduler_service.on_checkins_recorded(db_session, "festival")["pipeline"] is None

    _ingest(db_session, 1, start=124)
    scheduled = scheduler_service.on_checkins_recorded(db_session, "festival")

    assert scheduled["pipeline"] == TRIGGER_REFRESH
    assert [call[2]["trigger"] for call in dispatcher.tasks(TASK_PIPELINE)] == [
        TRIGGER_INITIAL, TRIGGER_REFRESH
    ]


def test_orphan_sweep_between_passes(db_session, dispatcher) -> None:
    _ingest(db_session, 25)
    scheduler_service.on_checkins_recorded(db_session, "festival")
    _add_gate(db_session)

    _ingest(db_session, 50, start=25)
    scheduled = scheduler_service.on_checkins_recorded(db_session, "festival")

    assert scheduled == {"pipeline": None, "orphan_sweep": True}
    assert dispatcher.tasks(TASK_ORPHANS) == [(TASK_ORPHANS, "festival", {})]
    assert scheduler_service.get_state(db_session, "festival").last_sweep_checkin_count == 75


def test_failed_dispatch_is_retried_on_next_checkin(db_session, dispatcher) -> None:
    _ingest(db_session, 30)
    dispatcher.fail = True

    scheduled = scheduler_service.on_checkins_recorded(db_session, "festival")

    assert scheduled["pipeline"] is None
    assert scheduler_service.get_state(db_session, "festival").last_pass_checkin_count == 0

    dispatcher.fail = False
    _ingest(db_session, 1, start=30)
    assert scheduler_service.on_checkins_recorded(db_session, "festival")["pipeline"] == TRIGGER_INITIAL


def test_flagged_checkins_do_not_count(db_session, dispatcher) -> None:
    checkin_service.record_batch(db_session, [
        dict(as_payload("festival", make_sample(i + 1)), status="failed")
        for i in range(30)
    ])

    assert scheduler_service.due_work(db_session, "festival")["checkin_count"] == 0


def test_rerun_flag_is_consumed_once(db_session) -> None:
    scheduler_service.request_rerun(db_session, "festival")

    assert scheduler_service.consume_rerun(db_session, "festival") is True
    assert scheduler_service.consume_rerun(db_session, "festival") is False


def test_record_pass_never_moves_counters_back(db_session) -> None:
    scheduler_service.record_pass(db_session, "festival", "physical", 120)
    scheduler_service.record_pass(db_session, "festival", "virtual", 80)

    state = scheduler_service.get_state(db_session, "festival")
    assert state.pass_count == 2
    assert state.active_strategy == "virtual"
    assert state.last_pass_checkin_count == 120
    assert state.last_sweep_checkin_count == 120
