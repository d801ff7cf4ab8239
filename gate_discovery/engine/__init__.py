"""
Engine package - pure gate discovery algorithms (no database, no settings)
"""
from gate_discovery.engine.discovery import DiscoveryResult, discover_gates
from gate_discovery.engine.errors import (
    ComputationError,
    ConcurrencyConflict,
    GateDiscoveryError,
    InputError,
)
from gate_discovery.engine.types import (
    CheckinSample,
    EngineConfig,
    GateCandidate,
    GateKind,
    Thresholds,
)

__all__ = [
    "DiscoveryResult",
    "discover_gates",
    "ComputationError",
    "ConcurrencyConflict",
    "GateDiscoveryError",
    "InputError",
    "CheckinSample",
    "EngineConfig",
    "GateCandidate",
    "GateKind",
    "Thresholds"
]
