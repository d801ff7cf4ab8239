"""
Error taxonomy for gate discovery.

Insufficient data is not an error: it is reported through the quality
report (``sufficient_data=False`` plus a recommendation to wait).
"""


class GateDiscoveryError(Exception):
    """Base class for gate discovery failures."""


class InputError(GateDiscoveryError):
    """Malformed or missing input. Fatal to the pass that received it."""


class ComputationError(GateDiscoveryError):
    """Numerical failure scoped to a single candidate; the candidate is dropped."""


class ConcurrencyConflict(GateDiscoveryError):
    """Another pass already holds the event. The trigger is deferred, not failed."""

    def __init__(self, event_id: str):
        super().__init__(f"Gate discovery pass already running for event {event_id}")
        self.event_id = event_id


MAX_EVENT_ID_LENGTH = 64


def validate_event_id(event_id) -> str:
    """Return the normalized event identifier or raise InputError."""
    if event_id is None:
        raise InputError("event_id is required")
    if not isinstance(event_id, str):
        raise InputError(f"event_id must be a string, got {type(event_id).__name__}")
    normalized = event_id.strip()
    if not normalized:
        raise InputError("event_id must not be blank")
    if len(normalized) > MAX_EVENT_ID_LENGTH:
        raise InputError(f"event_id longer than {MAX_EVENT_ID_LENGTH} characters")
    return normalized
