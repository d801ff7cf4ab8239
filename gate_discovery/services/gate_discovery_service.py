"""
Gate Discovery Service - pipeline orchestration

Operations offered to callers:
- quality_report: read-only data sufficiency summary
- preview: candidates and strategy without persisting anything
- run_pipeline: discover -> materialize -> assign orphans -> detect duplicates
- sweep_orphans: orphan assignment against the current gates only

A run holds the per-event lock. A busy event is deferred, not failed, and
the finishing pass re-enqueues one coalesced rerun. Stages commit
independently: a later stage failing leaves earlier stages in place and
the summary reports "partial".
"""
import logging
import time
from typing import Dict, Any, Optional, List
from datetime import datetime
from sqlalchemy.orm import Session

from gate_discovery.db.models import Gate, GatePipelineRun
from gate_discovery.engine.discovery import DiscoveryResult, discover_gates
from gate_discovery.engine.errors import ConcurrencyConflict, validate_event_id
from gate_discovery.engine.scoring import should_enforce
from gate_discovery.engine.types import GateKind
from gate_discovery.services.checkin_service import checkin_service
from gate_discovery.services.duplicate_service import MergePolicy, duplicate_service
from gate_discovery.services.lock_service import lock_service
from gate_discovery.services.materializer_service import materializer_service
from gate_discovery.services.orphan_service import orphan_service
from gate_discovery.services.scheduler_service import TRIGGER_RERUN, scheduler_service
from gate_discovery.services.thresholds_service import (
    engine_config_from_settings,
    thresholds_service,
)

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_DEFERRED = "deferred"
STATUS_FAILED = "failed"


def serialize_gate(gate: Gate) -> Dict[str, Any]:
    return {
        "id": gate.id,
        "event_id": gate.event_id,
        "kind": gate.kind,
        "name": gate.name,
        "latitude": gate.latitude,
        "longitude": gate.longitude,
        "detection_radius_meters": gate.detection_radius_meters,
        "dominant_category": gate.dominant_category,
        "category_distribution": gate.category_distribution,
        "confidence": gate.confidence,
        "enforcement_strength": gate.enforcement_strength,
        "status": gate.status,
        "member_count": gate.member_count,
        "avg_accuracy": gate.avg_accuracy,
        "derivation_method": gate.derivation_method,
        "merged_into_id": gate.merged_into_id,
        "details": gate.details,
        "created_at": gate.created_at.isoformat() if gate.created_at else None,
        "last_recomputed_at": gate.last_recomputed_at.isoformat() if gate.last_recomputed_at else None,
    }


class GateDiscoveryService:
    """Runs discovery passes for events."""

    def __init__(self, merge_policy: Optional[MergePolicy] = None):
        self.merge_policy = merge_policy

    def _discover(self, db: Session, event_id: str) -> DiscoveryResult:
        thresholds = thresholds_service.get_thresholds(db, event_id)
        samples, _ = checkin_service.load_snapshot(db, event_id)
        return discover_gates(event_id, samples, thresholds, engine_config_from_settings())

    def quality_report(self, db: Session, event_id: str) -> Dict[str, Any]:
        """Read-only; safe to call at any time."""
        event_id = validate_event_id(event_id)
        return self._discover(db, event_id).report.to_dict()

    def preview(self, db: Session, event_id: str) -> Dict[str, Any]:
        """Candidates and arbitration without touching any gate."""
        event_id = validate_event_id(event_id)
        preview = self._discover(db, event_id).to_dict()
        preview["dry_run"] = True
        return preview

    def list_gates(
        self,
        db: Session,
        event_id: str,
        include_archived: bool = False
    ) -> List[Dict[str, Any]]:
        event_id = validate_event_id(event_id)
        query = db.query(Gate).filter(Gate.event_id == event_id)
        if not include_archived:
            query = query.filter(Gate.status != "archived")
        return [serialize_gate(g) for g in query.order_by(Gate.id).all()]

    def run_pipeline(
        self,
        db: Session,
        event_id: str,
        trigger: str = "manual",
        dry_run: bool = False
    ) -> Dict[str, Any]:
        """
        Run the full discovery pipeline for one event.

        Raises InputError for a malformed event id; every other outcome is
        reported through the returned summary.
        """
        event_id = validate_event_id(event_id)
        if dry_run:
            return self.preview(db, event_id)

        started_at = datetime.utcnow()
        start_time = time.time()
        summary = self._empty_summary(event_id, trigger)

        try:
            with lock_service.event_lock(event_id):
                self._run_stages(db, event_id, summary)
        except ConcurrencyConflict:
            logger.info(f"Pipeline for event {event_id} deferred: a pass is already running")
            scheduler_service.request_rerun(db, event_id)
            summary["status"] = STATUS_DEFERRED
            summary["rerun_requested"] = True
        except Exception as e:
            logger.error(f"Gate pipeline failed for event {event_id}: {e}")
            db.rollback()
            summary["stage_errors"]["pipeline"] = str(e)
            summary["status"] = STATUS_PARTIAL if summary["stages_completed"] else STATUS_FAILED

        summary["execution_time_ms"] = round((time.time() - start_time) * 1000, 1)
        self._record_run(db, event_id, trigger, summary, started_at)

        if summary["status"] in (STATUS_SUCCESS, STATUS_PARTIAL):
            self._coalesced_rerun(db, event_id)
        return summary

    def _empty_summary(self, event_id: str, trigger: str) -> Dict[str, Any]:
        return {
            "event_id": event_id,
            "trigger": trigger,
            "status": STATUS_FAILED,
            "strategy": None,
            "strategy_reason": None,
            "checkins_in_snapshot": 0,
            "gates_created": 0,
            "gates_updated": 0,
            "gates_archived": 0,
            "checkins_detached": 0,
            "checkins_assigned": 0,
            "gates_affected": 0,
            "orphans_remaining": 0,
            "duplicate_suggestions": 0,
            "merges_applied": 0,
            "stages_completed": [],
            "stage_errors": {},
            "quality_report": None,
            "summary": None,
            "next_steps": [],
        }

    def _run_stages(self, db: Session, event_id: str, summary: Dict[str, Any]):
        thresholds = thresholds_service.get_thresholds(db, event_id)
        samples, max_id = checkin_service.load_snapshot(db, event_id)
        logger.info(f"Gate pipeline started for event {event_id}: {len(samples)} check-ins")

        result = discover_gates(event_id, samples, thresholds, engine_config_from_settings())
        summary["checkins_in_snapshot"] = len(samples)
        summary["strategy"] = result.strategy.value
        summary["strategy_reason"] = result.decision.reason
        summary["quality_report"] = result.report.to_dict()
        summary["stages_completed"].append("discovery")

        try:
            materialized = materializer_service.materialize(db, result, thresholds)
            summary.update({
                "gates_created": materialized["gates_created"],
                "gates_updated": materialized["gates_updated"],
                "gates_archived": materialized["gates_archived"],
                "checkins_detached": materialized["checkins_detached"],
            })
            summary["stages_completed"].append("materialize")
        except Exception as e:
            # Without gates the later stages have nothing to work on
            summary["stage_errors"]["materialize"] = str(e)
            summary["status"] = STATUS_FAILED
            return
        scheduler_service.record_pass(db, event_id, result.strategy.value, len(samples))

        try:
            assigned = orphan_service.assign_orphans(db, event_id, result.strategy, max_id)
            summary.update({
                "checkins_assigned": assigned["checkins_assigned"],
                "gates_affected": assigned["gates_affected"],
                "orphans_remaining": assigned["orphans_remaining"],
            })
            summary["stages_completed"].append("assign_orphans")
        except Exception as e:
            summary["stage_errors"]["assign_orphans"] = str(e)

        try:
            duplicates = duplicate_service.detect(db, event_id, thresholds)
            summary["duplicate_suggestions"] = duplicates["pending_suggestions"]
            if self.merge_policy is not None:
                summary["merges_applied"] = duplicate_service.apply_policy(
                    db, event_id, self.merge_policy
                )
                summary["duplicate_suggestions"] = duplicate_service.count_pending(db, event_id)
            summary["stages_completed"].append("detect_duplicates")
        except Exception as e:
            summary["stage_errors"]["detect_duplicates"] = str(e)

        summary["status"] = STATUS_PARTIAL if summary["stage_errors"] else STATUS_SUCCESS
        summary["summary"] = self._gate_summary(db, event_id)
        summary["next_steps"] = self._next_steps(event_id, summary)
        logger.info(
            f"Gate pipeline finished for event {event_id}: {summary['status']}, "
            f"{summary['gates_created']} created, {summary['gates_updated']} updated, "
            f"{summary['checkins_assigned']} assigned, {summary['orphans_remaining']} orphaned"
        )

    def _gate_summary(self, db: Session, event_id: str) -> Dict[str, Any]:
        gates = db.query(Gate).filter(
            Gate.event_id == event_id,
            Gate.status != "archived"
        ).all()
        confidences = [g.confidence for g in gates]
        return {
            "total_gates": len(gates),
            "physical_gates": sum(1 for g in gates if g.kind == GateKind.PHYSICAL.value),
            "virtual_gates": sum(1 for g in gates if g.kind == GateKind.VIRTUAL.value),
            "confirmed_gates": sum(1 for g in gates if g.status == "confirmed"),
            "enforceable_gates": sum(1 for g in gates if should_enforce(g.confidence)),
            "avg_confidence": round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
        }

    def _next_steps(self, event_id: str, summary: Dict[str, Any]) -> List[str]:
        steps = [f"Review gates at /events/{event_id}/gates"]
        if summary["orphans_remaining"]:
            steps.append(
                f"{summary['orphans_remaining']} orphaned check-ins remain - "
                "they are retried on the next orphan sweep"
            )
        else:
            steps.append("All check-ins assigned to gates")
        if summary["duplicate_suggestions"]:
            steps.append(f"{summary['duplicate_suggestions']} gate merge suggestions pending review")
        else:
            steps.append("No gate merges needed")
        if summary["stage_errors"]:
            steps.append("Some stages failed - rerun the pipeline once the errors are resolved")
        return steps

    def sweep_orphans(
        self,
        db: Session,
        event_id: str,
        trigger: str = "orphan_sweep"
    ) -> Dict[str, Any]:
        """Assign orphans to the event's current gates without rediscovering them."""
        event_id = validate_event_id(event_id)
        started_at = datetime.utcnow()
        start_time = time.time()
        summary = {"event_id": event_id, "trigger": trigger, "status": STATUS_FAILED}

        try:
            with lock_service.event_lock(event_id):
                state = scheduler_service.get_state(db, event_id)
                strategy = GateKind(state.active_strategy) if state.active_strategy else None
                result = orphan_service.assign_orphans(db, event_id, strategy)
                scheduler_service.record_sweep(db, event_id, result["checkins_considered"])
                summary.update(result)
                summary["strategy"] = strategy.value if strategy else None
                summary["status"] = STATUS_SUCCESS
        except ConcurrencyConflict:
            # The running pass assigns orphans itself
            summary["status"] = STATUS_DEFERRED
        except Exception as e:
            logger.error(f"Orphan sweep failed for event {event_id}: {e}")
            db.rollback()
            summary["stage_errors"] = {"assign_orphans": str(e)}

        summary["execution_time_ms"] = round((time.time() - start_time) * 1000, 1)
        self._record_run(db, event_id, trigger, summary, started_at)
        return summary

    def _record_run(
        self,
        db: Session,
        event_id: str,
        trigger: str,
        summary: Dict[str, Any],
        started_at: datetime
    ):
        try:
            errors = summary.get("stage_errors") or {}
            db.add(GatePipelineRun(
                event_id=event_id,
                trigger=trigger,
                status=summary["status"],
                summary=summary,
                error="; ".join(f"{k}: {v}" for k, v in errors.items()) or None,
                started_at=started_at,
                finished_at=datetime.utcnow(),
            ))
            db.commit()
        except Exception as e:
            logger.error(f"Error recording pipeline run for event {event_id}: {e}")
            db.rollback()

    def _coalesced_rerun(self, db: Session, event_id: str):
        try:
            if scheduler_service.consume_rerun(db, event_id):
                scheduler_service.dispatch_pipeline(event_id, TRIGGER_RERUN)
        except Exception as e:
            logger.error(f"Error re-enqueuing deferred pass for event {event_id}: {e}")
            db.rollback()

    def recent_runs(self, db: Session, event_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        event_id = validate_event_id(event_id)
        runs = db.query(GatePipelineRun).filter(
            GatePipelineRun.event_id == event_id
        ).order_by(GatePipelineRun.started_at.desc(), GatePipelineRun.id.desc()).limit(limit).all()
        return [
            {
                "id": run.id,
                "trigger": run.trigger,
                "status": run.status,
                "error": run.error,
                "started_at": run.started_at.isoformat(),
                "finished_at": run.finished_at.isoformat() if run.finished_at else None,
            }
            for run in runs
        ]


# Singleton instance
gate_discovery_service = GateDiscoveryService()
