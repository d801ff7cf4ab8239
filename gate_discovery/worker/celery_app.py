"""
Celery Application Configuration
"""
from celery import Celery
from gate_discovery.config import settings

# Create Celery app
celery_app = Celery(
    "gate_discovery_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "gate_discovery.worker.tasks"
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # A stuck pass is abandoned at the hard limit; the next trigger retries it
    task_time_limit=settings.PASS_TIMEOUT_SECONDS,
    task_soft_time_limit=max(1, settings.PASS_TIMEOUT_SECONDS - 30),
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,  # Results expire after 1 hour
)

# Task routing
celery_app.conf.task_routes = {
    "gate_discovery.worker.tasks.run_gate_pipeline": {"queue": "gate_discovery"},
    "gate_discovery.worker.tasks.assign_orphans": {"queue": "gate_discovery"},
    "gate_discovery.worker.tasks.*": {"queue": "default"},
}
