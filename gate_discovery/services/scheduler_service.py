"""
Recompute Scheduler Service

Decides, after check-ins are recorded, which background work is due for an
event. It only reads counters and enqueues tasks; passes never run on the
ingestion path.

Milestones are crossings measured from the last scheduled run, so a large
batch cannot jump over one:
- initial pass once the event reaches INITIAL_PASS_CHECKINS and has no gates
- refresh pass every REFRESH_EVERY_CHECKINS further check-ins
- orphan sweep every ORPHAN_SWEEP_EVERY_CHECKINS further check-ins
"""
import logging
from typing import Dict, Any, Optional, Callable
from datetime import datetime
from sqlalchemy.orm import Session

from gate_discovery.config import settings
from gate_discovery.db.models import EventDiscoveryState, Gate
from gate_discovery.services.checkin_service import checkin_service

logger = logging.getLogger(__name__)

TASK_PIPELINE = "run_gate_pipeline"
TASK_ORPHANS = "assign_orphans"

TRIGGER_INITIAL = "initial_discovery"
TRIGGER_REFRESH = "refresh"
TRIGGER_RERUN = "coalesced_rerun"

# dispatcher(task_name, event_id, **kwargs)
Dispatcher = Callable[..., Any]


def celery_dispatcher(task_name: str, event_id: str, **kwargs):
    """Enqueue on the Celery worker."""
    # Importing the app makes it current, so shared tasks use its broker
    from gate_discovery.worker.celery_app import celery_app  # noqa: F401
    from gate_discovery.worker import tasks

    return getattr(tasks, task_name).delay(event_id, **kwargs)


class SchedulerService:
    """Milestone-driven scheduling of discovery passes and orphan sweeps."""

    def __init__(self, dispatcher: Optional[Dispatcher] = None):
        self.dispatcher = dispatcher or celery_dispatcher

    def get_state(self, db: Session, event_id: str) -> EventDiscoveryState:
        state = db.query(EventDiscoveryState).filter(
            EventDiscoveryState.event_id == event_id
        ).first()
        if state is None:
            state = EventDiscoveryState(
                event_id=event_id,
                pass_count=0,
                last_pass_checkin_count=0,
                last_sweep_checkin_count=0,
                rerun_requested=False,
            )
            db.add(state)
            db.flush()
        return state

    def _dispatch(self, task_name: str, event_id: str, **kwargs) -> bool:
        try:
            self.dispatcher(task_name, event_id, **kwargs)
            return True
        except Exception as e:
            # Counters stay put so the next check-in retries the dispatch
            logger.error(f"Could not enqueue {task_name} for event {event_id}: {e}")
            return False

    def dispatch_pipeline(self, event_id: str, trigger: str) -> bool:
        logger.info(f"Scheduling gate pipeline for event {event_id} ({trigger})")
        return self._dispatch(TASK_PIPELINE, event_id, trigger=trigger)

    def dispatch_sweep(self, event_id: str) -> bool:
        logger.info(f"Scheduling orphan sweep for event {event_id}")
        return self._dispatch(TASK_ORPHANS, event_id)

    def due_work(self, db: Session, event_id: str) -> Dict[str, Any]:
        """Which work the counters call for, without dispatching anything."""
        state = self.get_state(db, event_id)
        count = checkin_service.count_usable(db, event_id)
        has_gates = db.query(Gate.id).filter(
            Gate.event_id == event_id,
            Gate.status != "archived"
        ).first() is not None

        trigger = None
        if (
            not has_gates
            and state.last_pass_checkin_count == 0
            and count >= settings.INITIAL_PASS_CHECKINS
        ):
            trigger = TRIGGER_INITIAL
        elif (
            state.last_pass_checkin_count > 0
            and count - state.last_pass_checkin_count >= settings.REFRESH_EVERY_CHECKINS
        ):
            trigger = TRIGGER_REFRESH

        # A pass assigns orphans itself; a separate sweep is only needed without one
        sweep = (
            trigger is None
            and has_gates
            and count - state.last_sweep_checkin_count >= settings.ORPHAN_SWEEP_EVERY_CHECKINS
        )
        return {"checkin_count": count, "pipeline_trigger": trigger, "orphan_sweep": sweep}

    def on_checkins_recorded(self, db: Session, event_id: str) -> Dict[str, Any]:
        """Enqueue whatever work is due for the event after new check-ins."""
        try:
            due = self.due_work(db, event_id)
            state = self.get_state(db, event_id)
            scheduled = {"pipeline": None, "orphan_sweep": False}

            if due["pipeline_trigger"] and self.dispatch_pipeline(event_id, due["pipeline_trigger"]):
                state.last_pass_checkin_count = due["checkin_count"]
                state.last_sweep_checkin_count = due["checkin_count"]
                scheduled["pipeline"] = due["pipeline_trigger"]
            elif due["orphan_sweep"] and self.dispatch_sweep(event_id):
                state.last_sweep_checkin_count = due["checkin_count"]
                scheduled["orphan_sweep"] = True

            db.commit()
            return scheduled
        except Exception as e:
            # Scheduling must never fail the ingestion that triggered it
            logger.error(f"Error scheduling gate discovery for event {event_id}: {e}")
            db.rollback()
            return {"pipeline": None, "orphan_sweep": False, "error": str(e)}

    def request_rerun(self, db: Session, event_id: str):
        try:
            state = self.get_state(db, event_id)
            state.rerun_requested = True
            db.commit()
        except Exception as e:
            logger.error(f"Error flagging rerun for event {event_id}: {e}")
            db.rollback()

    def consume_rerun(self, db: Session, event_id: str) -> bool:
        """Clear the rerun flag; True when a rerun had been requested."""
        state = self.get_state(db, event_id)
        requested = bool(state.rerun_requested)
        if requested:
            state.rerun_requested = False
        db.commit()
        return requested

    def record_pass(
        self,
        db: Session,
        event_id: str,
        strategy: str,
        checkin_count: int,
        now: Optional[datetime] = None
    ):
        state = self.get_state(db, event_id)
        state.active_strategy = strategy
        state.pass_count = (state.pass_count or 0) + 1
        state.last_pass_at = now or datetime.utcnow()
        state.last_pass_checkin_count = max(state.last_pass_checkin_count or 0, checkin_count)
        state.last_sweep_checkin_count = max(state.last_sweep_checkin_count or 0, checkin_count)
        db.commit()

    def record_sweep(self, db: Session, event_id: str, checkin_count: int):
        state = self.get_state(db, event_id)
        state.last_sweep_checkin_count = max(state.last_sweep_checkin_count or 0, checkin_count)
        db.commit()


# Singleton instance
scheduler_service = SchedulerService()
