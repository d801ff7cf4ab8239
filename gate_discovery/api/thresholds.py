"""
Thresholds API - per-event AdaptiveThresholds
"""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from gate_discovery.dependencies import get_db, verify_api_key
from gate_discovery.engine.errors import InputError
from gate_discovery.services.thresholds_service import thresholds_service

router = APIRouter(tags=["Thresholds"])


class ThresholdsUpdate(BaseModel):
    """Fields left out keep their current value"""
    duplicate_distance_meters: Optional[float] = Field(None, gt=0)
    min_checkins_for_gate: Optional[int] = Field(None, ge=1)
    confidence_threshold: Optional[float] = Field(None, ge=0, le=1)
    max_location_variance_meters: Optional[float] = Field(None, ge=0)
    promotion_sample_size: Optional[int] = Field(None, ge=1)
    
    class Config:
        json_schema_extra = {
            "example": {"duplicate_distance_meters": 30, "confidence_threshold": 0.8}
        }


@router.get("/events/{event_id}/thresholds")
def get_thresholds(event_id: str, db: Session = Depends(get_db)):
    try:
        return thresholds_service.describe(db, event_id)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/events/{event_id}/thresholds", dependencies=[Depends(verify_api_key)])
def update_thresholds(
    event_id: str,
    request: ThresholdsUpdate,
    db: Session = Depends(get_db)
):
    try:
        return thresholds_service.update_thresholds(
            db, event_id, request.model_dump(exclude_none=True)
        )
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
