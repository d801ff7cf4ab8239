"""
Gate Discovery API

Provides:
- GET /events/{event_id}/gates/quality-report: Data sufficiency (read-only)
- GET /events/{event_id}/gates/preview: Candidates without persisting
- POST /events/{event_id}/gates/run: Run the pipeline (or enqueue it)
- POST /events/{event_id}/gates/assign-orphans: Orphan sweep on current gates
- GET /events/{event_id}/gates: Current gates
- GET /events/{event_id}/gates/runs: Recent pipeline runs
- GET /events/{event_id}/gates/merge-suggestions: Merge suggestions
- POST /gates/merge-suggestions/{suggestion_id}/resolve: Approve or reject

Handlers are plain functions: FastAPI runs them in its threadpool, so a
synchronous pass never holds the event loop that serves ingestion.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gate_discovery.dependencies import get_db, verify_api_key
from gate_discovery.engine.errors import InputError, validate_event_id
from gate_discovery.services.duplicate_service import duplicate_service
from gate_discovery.services.gate_discovery_service import gate_discovery_service
from gate_discovery.services.scheduler_service import scheduler_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Gate Discovery"])


class ResolveSuggestionRequest(BaseModel):
    approve: bool = Field(..., description="True merges the gates, False rejects the suggestion")
    reviewed_by: str = Field("operator", max_length=100)
    
    class Config:
        json_schema_extra = {
            "example": {"approve": True, "reviewed_by": "ops@venue"}
        }


def _event_id(event_id: str) -> str:
    try:
        return validate_event_id(event_id)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/events/{event_id}/gates/quality-report")
def get_quality_report(event_id: str, db: Session = Depends(get_db)):
    """Summarize whether the event has enough data for gate discovery."""
    return gate_discovery_service.quality_report(db, _event_id(event_id))


@router.get("/events/{event_id}/gates/preview")
def preview_gates(event_id: str, db: Session = Depends(get_db)):
    """Compute candidate gates and the chosen strategy without persisting."""
    return gate_discovery_service.preview(db, _event_id(event_id))


@router.post("/events/{event_id}/gates/run", dependencies=[Depends(verify_api_key)])
def run_pipeline(
    event_id: str,
    background: bool = Query(False, description="Enqueue on the worker instead of running now"),
    dry_run: bool = Query(False, description="Preview only, nothing is persisted"),
    db: Session = Depends(get_db)
):
    """
    Run discovery -> materialization -> orphan assignment -> duplicate detection.
    
    Returns a summary with status success, partial, deferred or failed.
    """
    event_id = _event_id(event_id)
    if background and not dry_run:
        if not scheduler_service.dispatch_pipeline(event_id, "manual"):
            raise HTTPException(status_code=503, detail="Could not enqueue gate pipeline")
        return {"event_id": event_id, "status": "queued"}
    return gate_discovery_service.run_pipeline(db, event_id, trigger="manual", dry_run=dry_run)


@router.post("/events/{event_id}/gates/assign-orphans", dependencies=[Depends(verify_api_key)])
def assign_orphans(event_id: str, db: Session = Depends(get_db)):
    """Assign unassigned check-ins to the event's current gates."""
    return gate_discovery_service.sweep_orphans(db, _event_id(event_id), trigger="manual_sweep")


@router.get("/events/{event_id}/gates")
def list_gates(
    event_id: str,
    include_archived: bool = Query(False),
    db: Session = Depends(get_db)
):
    event_id = _event_id(event_id)
    gates = gate_discovery_service.list_gates(db, event_id, include_archived)
    return {"event_id": event_id, "total": len(gates), "gates": gates}


@router.get("/events/{event_id}/gates/runs")
def list_runs(
    event_id: str,
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db)
):
    event_id = _event_id(event_id)
    return {"event_id": event_id, "runs": gate_discovery_service.recent_runs(db, event_id, limit)}


@router.get("/events/{event_id}/gates/merge-suggestions")
def list_merge_suggestions(
    event_id: str,
    status: Optional[str] = Query("pending", description="pending, approved, rejected, merged or empty for all"),
    db: Session = Depends(get_db)
):
    event_id = _event_id(event_id)
    suggestions = duplicate_service.list_suggestions(db, event_id, status or None)
    return {"event_id": event_id, "total": len(suggestions), "suggestions": suggestions}


@router.post(
    "/gates/merge-suggestions/{suggestion_id}/resolve",
    dependencies=[Depends(verify_api_key)]
)
def resolve_merge_suggestion(
    suggestion_id: int,
    request: ResolveSuggestionRequest,
    db: Session = Depends(get_db)
):
    """Approve (merge the secondary gate into the primary) or reject a suggestion."""
    result = duplicate_service.resolve(
        db, suggestion_id, approve=request.approve, reviewed_by=request.reviewed_by
    )
    if not result["success"]:
        if result["error"] == "not_found":
            raise HTTPException(status_code=404, detail="Merge suggestion not found")
        raise HTTPException(status_code=409, detail=f"Merge suggestion {result['error']}")
    return result
