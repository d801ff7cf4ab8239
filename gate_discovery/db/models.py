"""
SQLAlchemy ORM Models for the Gate Discovery service
"""
from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime,
    ForeignKey, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gate_discovery.db.database import Base


class CheckinEvent(Base):
    """Immutable check-in fact; only gate assignment and external flags change"""
    __tablename__ = "checkin_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), nullable=False)
    wristband_id = Column(String(100))
    category = Column(String(100), nullable=False, default="General")
    timestamp = Column(DateTime, nullable=False)
    latitude = Column(Float)
    longitude = Column(Float)
    accuracy_meters = Column(Float)
    status = Column(String(20), nullable=False, default="success")
    # Owned by fraud/test tooling outside this service
    is_fraud = Column(Boolean, default=False)
    is_test = Column(Boolean, default=False)
    # Assignment
    gate_id = Column(Integer, ForeignKey("gates.id"), nullable=True)
    assignment_method = Column(String(50))
    assignment_confidence = Column(Float)
    assigned_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())

    gate = relationship("Gate", back_populates="checkins")

    __table_args__ = (
        Index('idx_checkin_events_event', 'event_id'),
        Index('idx_checkin_events_event_gate', 'event_id', 'gate_id'),
        Index('idx_checkin_events_timestamp', 'timestamp'),
    )


class AdaptiveThresholds(Base):
    """Per-event discovery thresholds; operators edit, the engine only reads"""
    __tablename__ = "adaptive_thresholds"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), nullable=False, unique=True)
    duplicate_distance_meters = Column(Float, nullable=False, default=25.0)
    min_checkins_for_gate = Column(Integer, nullable=False, default=3)
    confidence_threshold = Column(Float, nullable=False, default=0.75)
    max_location_variance_meters = Column(Float, nullable=False, default=5.0)
    promotion_sample_size = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())


class Gate(Base):
    __tablename__ = "gates"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), nullable=False)
    kind = Column(String(20), nullable=False)
    name = Column(String(255), nullable=False)
    # Null for virtual gates
    latitude = Column(Float)
    longitude = Column(Float)
    detection_radius_meters = Column(Float)
    dominant_category = Column(String(100), nullable=False)
    category_distribution = Column(JSON)
    confidence = Column(Float, nullable=False, default=0.0)
    enforcement_strength = Column(String(20), nullable=False, default="none")
    status = Column(String(20), nullable=False, default="candidate")
    member_count = Column(Integer, default=0)
    avg_accuracy = Column(Float)
    derivation_method = Column(String(50))
    missed_passes = Column(Integer, default=0)
    # Set when an approved merge folded this gate into another one
    merged_into_id = Column(Integer, ForeignKey("gates.id"), nullable=True)
    details = Column(JSON)
    created_at = Column(DateTime, server_default=func.now())
    last_recomputed_at = Column(DateTime)

    checkins = relationship("CheckinEvent", back_populates="gate")

    __table_args__ = (
        Index('idx_gates_event', 'event_id'),
        Index('idx_gates_event_kind_status', 'event_id', 'kind', 'status'),
    )


class GateMergeSuggestion(Base):
    __tablename__ = "gate_merge_suggestions"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), nullable=False)
    primary_gate_id = Column(Integer, ForeignKey("gates.id"), nullable=False)
    secondary_gate_id = Column(Integer, ForeignKey("gates.id"), nullable=False)
    distance_meters = Column(Float, nullable=False)
    category_overlap = Column(Float, nullable=False, default=0.0)
    confidence = Column(Float, nullable=False)
    reasoning = Column(Text)
    status = Column(String(20), nullable=False, default="pending")
    reviewed_by = Column(String(100))
    reviewed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())

    primary_gate = relationship("Gate", foreign_keys=[primary_gate_id])
    secondary_gate = relationship("Gate", foreign_keys=[secondary_gate_id])

    __table_args__ = (
        UniqueConstraint('event_id', 'primary_gate_id', 'secondary_gate_id', name='unique_merge_pair'),
        Index('idx_merge_suggestions_status', 'event_id', 'status'),
    )


class GatePipelineRun(Base):
    """Audit log of discovery passes and orphan sweeps"""
    __tablename__ = "gate_pipeline_runs"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), nullable=False)
    trigger = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)
    summary = Column(JSON)
    error = Column(Text)
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime)

    __table_args__ = (
        Index('idx_pipeline_runs_event', 'event_id', 'started_at'),
    )


class EventDiscoveryState(Base):
    """Per-event scheduler counters and the active strategy"""
    __tablename__ = "event_discovery_state"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(64), nullable=False, unique=True)
    active_strategy = Column(String(20))
    pass_count = Column(Integer, default=0)
    last_pass_checkin_count = Column(Integer, default=0)
    last_sweep_checkin_count = Column(Integer, default=0)
    rerun_requested = Column(Boolean, default=False)
    last_pass_at = Column(DateTime)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
