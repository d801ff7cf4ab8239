"""Human-readable gate names."""
from gate_discovery.engine.types import GateCandidate, GateKind


def gate_name(candidate: GateCandidate) -> str:
    category = candidate.dominant_category
    
    if candidate.kind == GateKind.PHYSICAL:
        count = candidate.member_count
        if count >= 200:
            return f"Primary {category} Gate"
        if count >= 100:
            return f"Main {category} Gate"
        if count >= 50:
            return f"{category} Entrance"
        if candidate.dominant_share >= 0.9:
            return f"{category} Dedicated Gate"
        return f"{category} Access Point"
    
    share = candidate.event_share
    if share >= 0.5:
        return f"Primary {category} Gate"
    if share >= 0.3:
        return f"{category} Main Entrance"
    if share >= 0.15:
        return f"{category} Gate"
    return f"{category} Virtual Access"
