import pytest
from scenarios import as_payload, two_gate_event
from sqlalchemy.orm import sessionmaker

from gate_discovery.services.checkin_service import checkin_service
from gate_discovery.services.gate_discovery_service import gate_discovery_service
from gate_discovery.worker import tasks


@pytest.fixture()
def task_sessions(engine, monkeypatch):
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(tasks, "get_db_session", factory)
    return factory


def test_pipeline_task_runs_the_pass(db_session, task_sessions) -> None:
    checkin_service.record_batch(db_session, [as_payload("festival", s) for s in two_gate_event()])

    result = tasks.run_gate_pipeline("festival", trigger="initial_discovery")

    assert result == {
        "event_id": "festival",
        "status": "success",
        "gates_created": 2,
        "gates_updated": 0,
        "checkins_assigned": 60,
    }


def test_sweep_task_without_gates_assigns_nothing(db_session, task_sessions) -> None:
    checkin_service.record_batch(db_session, [as_payload("festival", s) for s in two_gate_event()[:5]])

    result = tasks.assign_orphans("festival")

    assert result["status"] == "success"
    assert result["checkins_assigned"] == 0
    assert result["orphans_remaining"] == 5


def test_unexpected_failure_is_retried(task_sessions, monkeypatch) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(gate_discovery_service, "run_pipeline", broken)

    # Called directly, Celery re-raises instead of scheduling the retry
    with pytest.raises(RuntimeError):
        tasks.run_gate_pipeline("festival")
