"""
escalation_service.py — Escalation levels for unresponsive requests.

Level = f(priority, hours overdue). 0 before the deadline; past it, each
priority has three ascending thresholds (hours overdue for levels 1, 2, 3).
Critical thresholds are the tightest, normal the loosest, so for the same
overdue time level(critical) >= level(urgent) >= level(normal).

Business Rules:
- Escalation fires only when the level rises above the last applied level,
  so each level transition happens at most once
- escalated_at is stamped on the first escalation only, and only the first
  escalation notifies the operator
- Each escalation raises priority one step (normal → urgent → critical)
- Levels never go down while the request is open; terminal requests and
  manual clears reset to 0
- Operator recipients come from OperatorRecipientResolver (configuration)

Called by: scheduler.py (sweep), routers/workflow.py (manual escalate / clear)
Depends on: models, config, activity_service, notification_service
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import settings
from ..database import utcnow
from ..exceptions import NotFoundError
from ..models import Priority, ServiceRequest, TERMINAL_REQUEST_STATUSES
from .activity_service import log_activity
from .notification_service import (
    MessageRenderer,
    Notifier,
    OperatorRecipientResolver,
    PlainTextRenderer,
)

log = logging.getLogger("assistflow.escalation")

MAX_LEVEL = 3


@dataclass(frozen=True)
class EscalationThresholds:
    """Hours overdue before levels 1, 2 and 3, per priority."""

    hours: dict
    response_window_hours: dict

    @classmethod
    def from_settings(cls, s=None) -> "EscalationThresholds":
        s = s or settings
        return cls(
            hours={
                Priority.CRITICAL: tuple(s.escalation_hours_critical),
                Priority.URGENT: tuple(s.escalation_hours_urgent),
                Priority.NORMAL: tuple(s.escalation_hours_normal),
            },
            response_window_hours={
                Priority.CRITICAL: s.response_window_hours_critical,
                Priority.URGENT: s.response_window_hours_urgent,
                Priority.NORMAL: s.response_window_hours_normal,
            },
        )


@dataclass
class EscalationOutcome:
    request_id: int
    previous_level: int
    level: int
    first_escalation: bool
    notified: int = 0


def effective_deadline(priority, created_at: datetime | None, deadline: datetime | None, thresholds=None):
    """The explicit deadline, else created_at + the priority's response window."""
    if deadline is not None:
        return deadline
    if created_at is None:
        return None
    thresholds = thresholds or EscalationThresholds.from_settings()
    return created_at + timedelta(hours=thresholds.response_window_hours[Priority(priority)])


def evaluate_level(
    priority,
    created_at: datetime | None,
    deadline: datetime | None,
    now: datetime,
    thresholds: EscalationThresholds | None = None,
) -> int:
    thresholds = thresholds or EscalationThresholds.from_settings()
    deadline = effective_deadline(priority, created_at, deadline, thresholds)
    if deadline is None or now < deadline:
        return 0

    hours_overdue = (now - deadline).total_seconds() / 3600
    level = 0
    for n, limit in enumerate(thresholds.hours[Priority(priority)], start=1):
        if hours_overdue > limit:
            level = n
    return level


def should_escalate(level: int, previous_level: int) -> bool:
    return level > previous_level


# ── Side effects ──────────────────────────────────────────────────────


async def escalate_request(
    db: Session,
    request: ServiceRequest,
    level: int,
    notifier: Notifier | None = None,
    now: datetime | None = None,
    reason: str = "sla_breach",
    recipients: OperatorRecipientResolver | None = None,
    renderer: MessageRenderer | None = None,
) -> EscalationOutcome | None:
    """Apply an escalation to `level`. Returns None when it is not a rise."""
    now = now or utcnow()
    previous = request.escalation_level or 0
    if not should_escalate(level, previous):
        return None

    # Conditional on the level we read, so concurrent sweeps apply it once
    old_priority = request.priority
    new_priority = old_priority.raised()
    first = request.escalated_at is None
    values = {
        "escalation_level": level,
        "priority": new_priority,
        "updated_at": now,
    }
    if first:
        values["escalated_at"] = now
    won = (
        db.query(ServiceRequest)
        .filter(ServiceRequest.id == request.id, ServiceRequest.escalation_level == previous)
        .update(values, synchronize_session=False)
    )
    if not won:
        db.rollback()
        log.debug(f"Request {request.id}: escalation to {level} already applied elsewhere")
        return None

    deadline = effective_deadline(old_priority, request.created_at, request.response_deadline)
    hours_overdue = round((now - deadline).total_seconds() / 3600, 1) if deadline else None
    log_activity(
        db,
        "auto_escalated",
        request_id=request.id,
        supplier_id=request.assigned_supplier_id,
        details=f"Request escalated automatically from level {previous} to {level}",
        metadata={
            "escalation_reason": reason,
            "escalated_by": "system",
            "previous_level": previous,
            "level": level,
            "previous_priority": old_priority.value,
            "priority": new_priority.value,
            "hours_overdue": hours_overdue,
        },
    )
    db.commit()
    db.refresh(request)
    log.warning(f"Request {request.id} escalated to level {level} ({hours_overdue}h overdue)")

    outcome = EscalationOutcome(request.id, previous, level, first_escalation=first)
    if first and notifier is not None:
        outcome.notified = await _notify_operators(
            request, level, deadline, hours_overdue, notifier,
            recipients or OperatorRecipientResolver(), renderer or PlainTextRenderer(),
        )
    return outcome


async def _notify_operators(request, level, deadline, hours_overdue, notifier, recipients, renderer) -> int:
    emails = recipients.resolve()
    if not emails:
        log.warning(f"Escalation of request {request.id}: no operator recipients configured")
        return 0

    supplier = request.assigned_supplier
    message = renderer.render(
        "escalation",
        {
            "request_id": request.id,
            "title": request.title,
            "level": level,
            "priority": request.priority,
            "deadline": deadline.isoformat() if deadline else None,
            "hours_overdue": hours_overdue,
            "supplier_name": supplier.name if supplier else None,
            "supplier_email": supplier.email if supplier else None,
        },
    )
    sent = 0
    for email in emails:
        try:
            result = await asyncio.wait_for(
                notifier.send(email, message.subject, message.body, message.context),
                timeout=settings.dispatch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.error(f"Escalation notice to {email} timed out")
            continue
        if result.success:
            sent += 1
        else:
            log.error(f"Escalation notice to {email} failed: {result.reason}")
    return sent


async def run_escalation_sweep(
    db: Session,
    notifier: Notifier | None = None,
    now: datetime | None = None,
    thresholds: EscalationThresholds | None = None,
) -> dict:
    """Evaluate every open request; escalate rises, reset finished requests."""
    now = now or utcnow()
    thresholds = thresholds or EscalationThresholds.from_settings()
    result = {"evaluated": 0, "escalated": 0, "notified": 0, "reset": 0, "errors": 0}

    reset = (
        db.query(ServiceRequest)
        .filter(
            ServiceRequest.status.in_(list(TERMINAL_REQUEST_STATUSES)),
            ServiceRequest.escalation_level > 0,
        )
        .update({"escalation_level": 0}, synchronize_session=False)
    )
    db.commit()
    result["reset"] = reset

    open_requests = (
        db.query(ServiceRequest)
        .filter(ServiceRequest.status.notin_(list(TERMINAL_REQUEST_STATUSES)))
        .order_by(ServiceRequest.id)
        .all()
    )
    for request in open_requests:
        result["evaluated"] += 1
        try:
            level = evaluate_level(
                request.priority, request.created_at, request.response_deadline, now, thresholds
            )
            outcome = await escalate_request(db, request, level, notifier, now)
            if outcome:
                result["escalated"] += 1
                result["notified"] += outcome.notified
        except Exception as e:
            db.rollback()
            result["errors"] += 1
            log.error(f"Escalation sweep error for request {request.id}: {e}")

    if result["escalated"] or result["reset"]:
        log.info(
            f"Escalation sweep: {result['escalated']} escalated, {result['reset']} reset "
            f"of {result['evaluated']} open"
        )
    return result


# ── Manual operations ─────────────────────────────────────────────────


def _get_request(db: Session, request_id: int) -> ServiceRequest:
    request = db.get(ServiceRequest, request_id)
    if request is None:
        raise NotFoundError(f"Request {request_id} not found")
    return request


def escalate_manually(db: Session, request_id: int, reason: str, actor: str) -> ServiceRequest:
    """Operator override: straight to level 3 and critical priority."""
    request = _get_request(db, request_id)
    now = utcnow()
    previous = request.escalation_level or 0
    request.escalation_level = MAX_LEVEL
    request.priority = Priority.CRITICAL
    if request.escalated_at is None:
        request.escalated_at = now
    log_activity(
        db,
        "manual_escalated",
        request_id=request.id,
        supplier_id=request.assigned_supplier_id,
        details=f"Request escalated manually: {reason}",
        metadata={"escalation_reason": reason, "escalated_by": "user", "previous_level": previous},
        actor=actor,
    )
    db.commit()
    db.refresh(request)
    log.info(f"Request {request_id} escalated manually by {actor}")
    return request


def clear_escalation(db: Session, request_id: int, actor: str) -> ServiceRequest:
    request = _get_request(db, request_id)
    previous = request.escalation_level or 0
    request.escalation_level = 0
    log_activity(
        db,
        "escalation_cleared",
        request_id=request.id,
        supplier_id=request.assigned_supplier_id,
        details=f"Escalation cleared (was level {previous})",
        metadata={"previous_level": previous},
        actor=actor,
    )
    db.commit()
    db.refresh(request)
    log.info(f"Request {request_id} escalation cleared by {actor}")
    return request
