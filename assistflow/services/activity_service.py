"""
activity_service.py — Audit trail for every automated and manual state change.

Business Rules:
- The activity log is append-only; rows are never updated or deleted
- Entries are added to the caller's session; the caller owns the commit
- Metadata is an open bag, but request/supplier/schedule ids are real columns

Called by: orchestrator, escalation_service, auto_approval_service, routers/workflow.py,
           access_code_service, followup_service
Depends on: models
"""

import logging

from sqlalchemy.orm import Session

from ..models import ActivityLog

log = logging.getLogger("assistflow.activity")


def log_activity(
    db: Session,
    action: str,
    *,
    request_id: int | None = None,
    supplier_id: int | None = None,
    schedule_id: int | None = None,
    details: str = "",
    metadata: dict | None = None,
    actor: str = "system",
) -> ActivityLog:
    """Stage an ActivityLog entry in the caller's session."""
    entry = ActivityLog(
        action=action,
        request_id=request_id,
        supplier_id=supplier_id,
        schedule_id=schedule_id,
        details=details or None,
        meta=dict(metadata or {}),
        actor=actor,
    )
    db.add(entry)
    log.debug(f"Audit [{action}] request={request_id} schedule={schedule_id}: {details}")
    return entry


def get_request_activity(db: Session, request_id: int, limit: int = 100) -> list[ActivityLog]:
    """Most recent audit entries for a request, newest first."""
    return (
        db.query(ActivityLog)
        .filter(ActivityLog.request_id == request_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
        .all()
    )
