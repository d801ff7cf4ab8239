"""
API routers package
"""
from gate_discovery.api import (
    system,
    checkin,
    gates,
    thresholds
)

__all__ = [
    "system",
    "checkin",
    "gates",
    "thresholds"
]
