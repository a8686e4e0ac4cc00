"""
followup_service.py — Create, cancel, reschedule and report on follow-up schedules.

Business Rules:
- A schedule needs an existing request and supplier (checked here, not in metadata)
- Priority defaults to the request's priority at creation time
- cancel: pending → cancelled only
- reschedule: pending, or failed with attempts left → pending at the new time
- reschedule also recovers a processing schedule whose claim is older than
  stale_claim_minutes (its run died); a fresh claim is still in flight
- sent, cancelled and exhausted schedules are final
- Business events create the follow-ups the supplier will need
  (assignment → quotation reminder, approval → date confirmation, ...)

Called by: routers/followups.py, event hooks in calling code
Depends on: schedule_store, models, config
"""

import logging
from datetime import datetime, time, timedelta, timezone

from sqlalchemy import func as sqlfunc
from sqlalchemy.orm import Session

from ..config import settings
from ..database import utcnow
from ..exceptions import InvalidTransition, NotFoundError
from ..models import (
    FollowUpKind,
    FollowUpSchedule,
    FollowUpStatus,
    Priority,
    ServiceRequest,
    Supplier,
)
from .schedule_store import ScheduleStore

log = logging.getLogger("assistflow.followups")


def create_schedule(
    db: Session,
    request_id: int,
    supplier_id: int,
    kind: FollowUpKind,
    scheduled_for: datetime,
    priority: Priority | None = None,
    max_attempts: int | None = None,
    metadata: dict | None = None,
) -> FollowUpSchedule:
    request = db.get(ServiceRequest, request_id)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found")
    if db.get(Supplier, supplier_id) is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")

    kind = FollowUpKind(kind)
    max_attempts = max_attempts or settings.followup_default_max_attempts
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    schedule = ScheduleStore(db).create(
        request_id=request_id,
        supplier_id=supplier_id,
        kind=kind,
        priority=Priority(priority) if priority else request.priority,
        status=FollowUpStatus.PENDING,
        scheduled_for=scheduled_for,
        attempt_count=0,
        max_attempts=max_attempts,
        meta=dict(metadata or {}),
        audit={
            "action": "followup_created",
            "details": f"{kind.value} scheduled for {scheduled_for.isoformat()}",
            "metadata": {"kind": kind.value},
        },
    )
    log.info(f"Follow-up {schedule.id} ({kind.value}) scheduled for {scheduled_for.isoformat()}")
    return schedule


def schedule_followups_for_event(
    db: Session,
    request: ServiceRequest,
    event: str,
    supplier_id: int | None = None,
    now: datetime | None = None,
    metadata: dict | None = None,
) -> list[FollowUpSchedule]:
    """Create the follow-ups a business event calls for.

    Events: assignment, quotation_approved, work_scheduled (metadata.work_date),
    work_started (metadata.expected_completion). Unknown events create nothing.
    """
    now = now or utcnow()
    supplier_id = supplier_id or request.assigned_supplier_id
    if supplier_id is None:
        raise InvalidTransition(f"Request {request.id} has no assigned supplier")
    metadata = dict(metadata or {})
    metadata.setdefault("trigger_event", event)

    plan: list[tuple[FollowUpKind, datetime]] = []
    if event == "assignment":
        plan.append(
            (FollowUpKind.QUOTATION_REMINDER, now + timedelta(hours=settings.quotation_reminder_delay_hours))
        )
    elif event == "quotation_approved":
        plan.append(
            (FollowUpKind.DATE_CONFIRMATION, now + timedelta(hours=settings.date_confirmation_delay_hours))
        )
    elif event == "work_scheduled":
        work_date = _parse_when(metadata.get("work_date"))
        if work_date is None:
            raise ValueError("work_scheduled needs metadata.work_date")
        plan.append(
            (FollowUpKind.WORK_REMINDER, max(now, work_date - timedelta(hours=settings.work_reminder_lead_hours)))
        )
    elif event == "work_started":
        expected = _parse_when(metadata.get("expected_completion"))
        if expected is None:
            raise ValueError("work_started needs metadata.expected_completion")
        plan.append((FollowUpKind.COMPLETION_REMINDER, max(now, expected)))
    else:
        log.debug(f"No follow-ups for event {event!r}")

    return [
        create_schedule(db, request.id, supplier_id, kind, when, metadata=metadata)
        for kind, when in plan
    ]


def _parse_when(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _get_or_404(store: ScheduleStore, schedule_id: int) -> FollowUpSchedule:
    schedule = store.get(schedule_id)
    if schedule is None:
        raise NotFoundError(f"Follow-up {schedule_id} not found")
    return schedule


def cancel_schedule(db: Session, schedule_id: int, actor: str = "system") -> FollowUpSchedule:
    store = ScheduleStore(db)
    schedule = _get_or_404(store, schedule_id)
    if schedule.status != FollowUpStatus.PENDING:
        raise InvalidTransition(
            f"Follow-up {schedule_id} is {schedule.status.value}; only pending follow-ups can be cancelled"
        )
    won = store.transition(
        schedule,
        FollowUpStatus.PENDING,
        FollowUpStatus.CANCELLED,
        next_attempt_at=None,
        audit={"action": "followup_cancelled", "details": "Follow-up cancelled", "actor": actor},
    )
    if not won:
        raise InvalidTransition(f"Follow-up {schedule_id} changed to {schedule.status.value} meanwhile")
    log.info(f"Follow-up {schedule_id} cancelled by {actor}")
    return schedule


def reschedule_schedule(
    db: Session, schedule_id: int, new_time: datetime, actor: str = "system", now: datetime | None = None
) -> FollowUpSchedule:
    now = now or utcnow()
    store = ScheduleStore(db)
    schedule = _get_or_404(store, schedule_id)

    if schedule.status == FollowUpStatus.FAILED and schedule.is_exhausted:
        raise InvalidTransition(
            f"Follow-up {schedule_id} used all {schedule.max_attempts} attempts and cannot be rescheduled"
        )
    if schedule.status == FollowUpStatus.PROCESSING and not _is_stale_claim(schedule, now):
        raise InvalidTransition(f"Follow-up {schedule_id} is being processed and cannot be rescheduled")
    if schedule.status not in (FollowUpStatus.PENDING, FollowUpStatus.FAILED, FollowUpStatus.PROCESSING):
        raise InvalidTransition(
            f"Follow-up {schedule_id} is {schedule.status.value} and cannot be rescheduled"
        )

    previous_status = schedule.status
    meta = dict(schedule.meta or {})
    meta["rescheduled_from"] = schedule.scheduled_for.isoformat() if schedule.scheduled_for else None
    won = store.transition(
        schedule,
        previous_status,
        FollowUpStatus.PENDING,
        scheduled_for=new_time,
        next_attempt_at=None,
        meta=meta,
        audit={
            "action": "followup_rescheduled",
            "details": f"Rescheduled to {new_time.isoformat()} (was {previous_status.value})",
            "metadata": {"previous_status": previous_status.value},
            "actor": actor,
        },
    )
    if not won:
        raise InvalidTransition(f"Follow-up {schedule_id} changed to {schedule.status.value} meanwhile")
    log.info(f"Follow-up {schedule_id} rescheduled to {new_time.isoformat()}")
    return schedule


def _stale_cutoff(now: datetime) -> datetime:
    return now - timedelta(minutes=settings.stale_claim_minutes)


def _is_stale_claim(schedule: FollowUpSchedule, now: datetime) -> bool:
    return schedule.updated_at is not None and schedule.updated_at <= _stale_cutoff(now)


def list_schedules(db: Session, status=None, kind=None, priority=None, limit: int = 200) -> list[FollowUpSchedule]:
    return ScheduleStore(db).search(status=status, kind=kind, priority=priority, limit=limit)


def get_processing_stats(db: Session, now: datetime | None = None) -> dict:
    """Operational counters: backlog, due now, sent/failed since UTC midnight,
    and claims stuck in processing past stale_claim_minutes."""
    now = now or utcnow()
    day_start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    S = FollowUpSchedule

    pending = db.query(S).filter(S.status == FollowUpStatus.PENDING)
    total_pending = pending.count()
    due_now = (
        pending.filter(S.attempt_count < S.max_attempts)
        .filter(sqlfunc.coalesce(S.next_attempt_at, S.scheduled_for) <= now)
        .count()
    )
    sent_today = (
        db.query(S).filter(S.status == FollowUpStatus.SENT, S.sent_at >= day_start).count()
    )
    failed_today = (
        db.query(S).filter(S.status == FollowUpStatus.FAILED, S.updated_at >= day_start).count()
    )
    stuck_processing = (
        db.query(S)
        .filter(S.status == FollowUpStatus.PROCESSING, S.updated_at <= _stale_cutoff(now))
        .count()
    )

    by_kind = {k.value: 0 for k in FollowUpKind}
    for kind, n in db.query(S.kind, sqlfunc.count(S.id)).group_by(S.kind).all():
        by_kind[FollowUpKind(kind).value] = n
    by_priority = {p.value: 0 for p in Priority}
    for priority, n in db.query(S.priority, sqlfunc.count(S.id)).group_by(S.priority).all():
        by_priority[Priority(priority).value] = n

    return {
        "total_pending": total_pending,
        "due_now": due_now,
        "sent_today": sent_today,
        "failed_today": failed_today,
        "stuck_processing": stuck_processing,
        "by_kind": by_kind,
        "by_priority": by_priority,
    }
