"""
routers/workflow.py — SLA metrics, escalations and auto-approval

Business Rules:
- GET /api/sla is read-only and recomputed on every call
- Manual escalation jumps straight to level 3 / critical and is audited
  with the operator's reason
- /api/auto-approval/evaluate is a dry run: nothing is written
- A request's audit trail is served newest first

Called by: main.py (router registration)
Depends on: services/sla_service.py, services/escalation_service.py,
            services/auto_approval_service.py, services/activity_service.py
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..exceptions import NotFoundError
from ..models import ActivityLog, ServiceRequest
from ..rate_limit import limiter
from ..schemas.workflow import (
    ActivityOut,
    AutoApprovalDecisionOut,
    AutoApprovalEvaluate,
    ClearEscalation,
    ManualEscalation,
    RequestEscalationOut,
    SLASnapshotOut,
)
from ..services import escalation_service
from ..services.activity_service import get_request_activity
from ..services.auto_approval_service import evaluate_auto_approval, run_auto_approvals
from ..services.notification_service import get_notifier
from ..services.sla_service import compute_sla_snapshot

router = APIRouter(tags=["workflow"])


def _escalation_to_dict(r: ServiceRequest) -> dict:
    return {
        "id": r.id,
        "status": r.status.value,
        "priority": r.priority,
        "escalation_level": r.escalation_level,
        "escalated_at": r.escalated_at,
    }


def _activity_to_dict(a: ActivityLog) -> dict:
    return {
        "id": a.id,
        "action": a.action,
        "request_id": a.request_id,
        "supplier_id": a.supplier_id,
        "schedule_id": a.schedule_id,
        "actor": a.actor,
        "details": a.details,
        "metadata": a.meta or {},
        "created_at": a.created_at,
    }


# ── SLA ──────────────────────────────────────────────────────────────


@router.get("/api/sla", response_model=SLASnapshotOut)
async def sla_snapshot(
    window_days: int | None = Query(None, ge=1, le=365),
    db: Session = Depends(get_db),
):
    return compute_sla_snapshot(db, window_days=window_days or settings.sla_window_days).to_dict()


# ── Auto-approval ────────────────────────────────────────────────────


@router.post("/api/auto-approval/evaluate", response_model=AutoApprovalDecisionOut)
async def auto_approval_evaluate(payload: AutoApprovalEvaluate):
    decision = evaluate_auto_approval(payload.amount, payload.priority, payload.threshold)
    return {
        "approve": decision.approve,
        "reason": decision.reason,
        "amount": str(decision.amount),
        "threshold": str(decision.threshold),
        "priority": decision.priority,
        "comparison": decision.comparison,
    }


@router.post("/api/auto-approval/run")
@limiter.limit(settings.rate_limit_process)
async def auto_approval_run(request: Request, db: Session = Depends(get_db)):
    result = run_auto_approvals(db)
    logger.info("Manual auto-approval run: {} approved", result["approved"])
    return result


# ── Escalation ───────────────────────────────────────────────────────


@router.post("/api/escalations/run")
@limiter.limit(settings.rate_limit_process)
async def escalation_run(request: Request, db: Session = Depends(get_db)):
    return await escalation_service.run_escalation_sweep(db, notifier=get_notifier())


@router.post("/api/requests/{request_id}/escalate", response_model=RequestEscalationOut)
async def escalate_request(request_id: int, payload: ManualEscalation, db: Session = Depends(get_db)):
    try:
        r = escalation_service.escalate_manually(db, request_id, payload.reason, payload.actor)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return _escalation_to_dict(r)


@router.post("/api/requests/{request_id}/clear-escalation", response_model=RequestEscalationOut)
async def clear_escalation(request_id: int, payload: ClearEscalation | None = None, db: Session = Depends(get_db)):
    actor = payload.actor if payload else "operator"
    try:
        r = escalation_service.clear_escalation(db, request_id, actor)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return _escalation_to_dict(r)


# ── Audit trail ──────────────────────────────────────────────────────


@router.get("/api/requests/{request_id}/activity", response_model=list[ActivityOut])
async def request_activity(
    request_id: int,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    if db.get(ServiceRequest, request_id) is None:
        raise HTTPException(404, f"Request {request_id} not found")
    return [_activity_to_dict(a) for a in get_request_activity(db, request_id, limit=limit)]
