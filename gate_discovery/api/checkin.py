"""
Check-in API - ingestion endpoints

Provides:
- POST /checkin: Record one check-in
- POST /checkin/batch: Record several check-ins atomically

Recording never runs discovery inline; it asks the scheduler which
background work is due and reports what was enqueued.
"""
import logging
from datetime import datetime
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gate_discovery.dependencies import get_db, verify_api_key
from gate_discovery.engine.errors import InputError
from gate_discovery.services.checkin_service import checkin_service
from gate_discovery.services.scheduler_service import scheduler_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/checkin", tags=["Check-in"])

MAX_BATCH_SIZE = 1000


class CheckinRequest(BaseModel):
    """Request model for recording a check-in"""
    event_id: str = Field(..., description="Event identifier")
    wristband_id: Optional[str] = Field(None, description="Wristband/attendee identifier")
    category: Optional[str] = Field(None, description="Attendee category (defaults to General)")
    timestamp: Optional[datetime] = Field(None, description="Check-in time (defaults to now)")
    latitude: Optional[float] = Field(None, description="Reported latitude")
    longitude: Optional[float] = Field(None, description="Reported longitude")
    accuracy: Optional[float] = Field(None, description="Reported accuracy radius in meters")
    
    class Config:
        json_schema_extra = {
            "example": {
                "event_id": "summer-fest-2026",
                "wristband_id": "WB-001234",
                "category": "VIP",
                "latitude": 51.5074,
                "longitude": -0.1278,
                "accuracy": 12.0
            }
        }


class CheckinBatchRequest(BaseModel):
    checkins: List[CheckinRequest] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)


class CheckinResponse(BaseModel):
    checkin_id: int
    event_id: str
    scheduled: dict


class CheckinBatchResponse(BaseModel):
    recorded: int
    checkin_ids: List[int]
    scheduled: dict


@router.post("", response_model=CheckinResponse, dependencies=[Depends(verify_api_key)])
def record_checkin(
    request: CheckinRequest,
    db: Session = Depends(get_db)
):
    """Record a check-in and enqueue any discovery work that became due."""
    try:
        checkin = checkin_service.record_checkin(db, request.model_dump())
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    
    scheduled = scheduler_service.on_checkins_recorded(db, checkin.event_id)
    return CheckinResponse(
        checkin_id=checkin.id,
        event_id=checkin.event_id,
        scheduled=scheduled
    )


@router.post("/batch", response_model=CheckinBatchResponse, dependencies=[Depends(verify_api_key)])
def record_checkin_batch(
    request: CheckinBatchRequest,
    db: Session = Depends(get_db)
):
    """Record a batch of check-ins; one malformed entry rejects the whole batch."""
    try:
        checkins = checkin_service.record_batch(
            db, [c.model_dump() for c in request.checkins]
        )
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    
    scheduled = {
        event_id: scheduler_service.on_checkins_recorded(db, event_id)
        for event_id in checkin_service.events_in(checkins)
    }
    return CheckinBatchResponse(
        recorded=len(checkins),
        checkin_ids=[c.id for c in checkins],
        scheduled=scheduled
    )
