"""
Services package - Database-facing gate discovery logic
"""
from gate_discovery.services.checkin_service import checkin_service
from gate_discovery.services.thresholds_service import thresholds_service
from gate_discovery.services.materializer_service import materializer_service
from gate_discovery.services.orphan_service import orphan_service
from gate_discovery.services.duplicate_service import duplicate_service
from gate_discovery.services.lock_service import lock_service
from gate_discovery.services.scheduler_service import scheduler_service
from gate_discovery.services.gate_discovery_service import gate_discovery_service

__all__ = [
    "checkin_service",
    "thresholds_service",
    "materializer_service",
    "orphan_service",
    "duplicate_service",
    "lock_service",
    "scheduler_service",
    "gate_discovery_service"
]
