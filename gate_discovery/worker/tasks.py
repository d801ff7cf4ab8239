"""
Celery Tasks for gate discovery passes

Tasks open their own database session; passes for different events run
independently, passes for the same event are serialized by the event lock.
"""
import logging
from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded
from gate_discovery.db.database import SessionLocal

logger = logging.getLogger(__name__)


def get_db_session():
    """Get database session for tasks"""
    return SessionLocal()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def run_gate_pipeline(self, event_id: str, trigger: str = "scheduled"):
    """
    Run the full discovery pipeline for one event.
    
    - Discovers and arbitrates candidates
    - Materializes gates
    - Assigns orphaned check-ins
    - Flags duplicate gates
    """
    from gate_discovery.services.gate_discovery_service import gate_discovery_service
    
    db = get_db_session()
    try:
        result = gate_discovery_service.run_pipeline(db, event_id, trigger=trigger)
        logger.info(f"Gate pipeline for event {event_id} ({trigger}): {result['status']}")
        return {
            "event_id": event_id,
            "status": result["status"],
            "gates_created": result["gates_created"],
            "gates_updated": result["gates_updated"],
            "checkins_assigned": result["checkins_assigned"],
        }
    except SoftTimeLimitExceeded:
        # Abandoned; the next milestone or rerun request picks the event up
        logger.error(f"Gate pipeline for event {event_id} exceeded its time limit")
        db.rollback()
        return {"event_id": event_id, "status": "timeout"}
    except Exception as e:
        logger.error(f"Gate pipeline task failed for event {event_id}: {e}")
        self.retry(exc=e)
    finally:
        db.close()


@shared_task(bind=True, max_retries=3, default_retry_delay=30)
def assign_orphans(self, event_id: str):
    """Assign orphaned check-ins to the event's current gates."""
    from gate_discovery.services.gate_discovery_service import gate_discovery_service
    
    db = get_db_session()
    try:
        result = gate_discovery_service.sweep_orphans(db, event_id)
        logger.info(
            f"Orphan sweep for event {event_id}: {result['status']}, "
            f"{result.get('checkins_assigned', 0)} assigned"
        )
        return {
            "event_id": event_id,
            "status": result["status"],
            "checkins_assigned": result.get("checkins_assigned", 0),
            "orphans_remaining": result.get("orphans_remaining", 0),
        }
    except SoftTimeLimitExceeded:
        logger.error(f"Orphan sweep for event {event_id} exceeded its time limit")
        db.rollback()
        return {"event_id": event_id, "status": "timeout"}
    except Exception as e:
        logger.error(f"Orphan sweep task failed for event {event_id}: {e}")
        self.retry(exc=e)
    finally:
        db.close()
