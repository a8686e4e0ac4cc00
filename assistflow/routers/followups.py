"""
routers/followups.py — Follow-up schedule endpoints and manual processing triggers

Business Rules:
- process-due / process-all are rate limited; they may race the scheduler
  safely (claim compare-and-set)
- Service errors map to HTTP: NotFoundError → 404, InvalidTransition → 409,
  ValueError → 422

Called by: main.py (router registration)
Depends on: services/followup_service.py, orchestrator.py
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..exceptions import InvalidTransition, NotFoundError
from ..models import FollowUpKind, FollowUpSchedule, FollowUpStatus, Priority
from ..orchestrator import process_all, process_due
from ..rate_limit import limiter
from ..schemas.followups import (
    BatchResultOut,
    FollowUpCreate,
    FollowUpOut,
    FollowUpReschedule,
    ProcessingStats,
)
from ..services import followup_service
from ..services.notification_service import get_notifier

router = APIRouter(tags=["followups"])


def schedule_to_dict(s: FollowUpSchedule) -> dict:
    return {
        "id": s.id,
        "request_id": s.request_id,
        "supplier_id": s.supplier_id,
        "kind": s.kind,
        "priority": s.priority,
        "status": s.status,
        "scheduled_for": s.scheduled_for,
        "sent_at": s.sent_at,
        "attempt_count": s.attempt_count,
        "max_attempts": s.max_attempts,
        "next_attempt_at": s.next_attempt_at,
        "metadata": s.meta or {},
        "version": s.version,
    }


@router.post("/api/followups", response_model=FollowUpOut, status_code=201)
async def create_followup(payload: FollowUpCreate, db: Session = Depends(get_db)):
    try:
        schedule = followup_service.create_schedule(
            db,
            payload.request_id,
            payload.supplier_id,
            payload.kind,
            payload.scheduled_for,
            priority=payload.priority,
            max_attempts=payload.max_attempts,
            metadata=payload.metadata,
        )
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(422, str(e))
    return schedule_to_dict(schedule)


@router.get("/api/followups", response_model=list[FollowUpOut])
async def list_followups(
    status: FollowUpStatus | None = Query(None),
    kind: FollowUpKind | None = Query(None),
    priority: Priority | None = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    rows = followup_service.list_schedules(db, status=status, kind=kind, priority=priority, limit=limit)
    return [schedule_to_dict(s) for s in rows]


@router.get("/api/followups/stats", response_model=ProcessingStats)
async def followup_stats(db: Session = Depends(get_db)):
    return followup_service.get_processing_stats(db)


@router.post("/api/followups/process-due", response_model=BatchResultOut)
@limiter.limit(settings.rate_limit_process)
async def trigger_process_due(request: Request, db: Session = Depends(get_db)):
    """Run one processing cycle now, exactly as the scheduler would."""
    result = await process_due(db, notifier=get_notifier())
    logger.info("Manual process-due: {} sent of {} selected", result.sent, result.selected)
    return result.to_dict()


@router.post("/api/followups/process-all", response_model=BatchResultOut)
@limiter.limit(settings.rate_limit_process)
async def trigger_process_all(request: Request, db: Session = Depends(get_db)):
    """Manual override: send pending follow-ups even if not due yet."""
    result = await process_all(db, notifier=get_notifier())
    logger.info("Manual process-all: {} sent of {} selected", result.sent, result.selected)
    return result.to_dict()


@router.post("/api/followups/{schedule_id}/cancel", response_model=FollowUpOut)
async def cancel_followup(schedule_id: int, db: Session = Depends(get_db)):
    try:
        schedule = followup_service.cancel_schedule(db, schedule_id, actor="api")
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    return schedule_to_dict(schedule)


@router.post("/api/followups/{schedule_id}/reschedule", response_model=FollowUpOut)
async def reschedule_followup(schedule_id: int, payload: FollowUpReschedule, db: Session = Depends(get_db)):
    try:
        schedule = followup_service.reschedule_schedule(db, schedule_id, payload.new_time, actor="api")
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    return schedule_to_dict(schedule)
