"""
orchestrator.py — The follow-up processing loop.

Each run selects a bounded batch of pending schedules, claims them one at a
time and pushes each through render → dispatch → finalize. Overlapping runs
(scheduler tick + manual trigger) are safe because the claim is a
store-level compare-and-set: whoever loses it skips the item.

Business Rules:
- process_due: pending, attempts left, coalesce(next_attempt_at, scheduled_for) <= now
- process_all: every pending schedule with attempts left, regardless of time
- Batch size is settings.followup_batch_size (20)
- Every dispatch runs under asyncio.wait_for(dispatch_timeout_seconds);
  a timeout counts as a transient failure
- success → sent; permanent failure → failed at once (one attempt used);
  transient failure → retry at next_attempt_at, or failed when exhausted
- Missing request/supplier is an integrity failure: failed, audited, batch continues
- A store error while claiming or recording an outcome is isolated to its item;
  a claimed item is handed back to pending (attempt not counted) so it is
  retried, not lost
- A schedule sent before its scheduled_for has scheduled_for pulled back to
  the send time (original kept in metadata), so scheduled_for <= sent_at
- Quotation reminders carry a freshly issued access code
- A schedule whose request is already completed or cancelled is cancelled
  (audited), never sent

Called by: scheduler.py (followup_processing job), routers/followups.py
Depends on: schedule_store, retry_policy, notification_service,
            access_code_service, models, config
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .database import utcnow
from .exceptions import IntegrityViolation
from .models import FollowUpKind, FollowUpSchedule, FollowUpStatus, ServiceRequest, Supplier
from .services.access_code_service import issue_access_code, mask_code
from .services.notification_service import (
    MessageRenderer,
    Notifier,
    PlainTextRenderer,
    SendResult,
    get_notifier,
    is_valid_recipient,
)
from .services.retry_policy import RetryPolicy, backoff, compute_next_attempt
from .services.schedule_store import ScheduleStore

log = logging.getLogger("assistflow.orchestrator")


@dataclass
class BatchResult:
    mode: str
    selected: int = 0
    processed: int = 0
    sent: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    cancelled: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


async def process_due(
    db: Session,
    notifier: Notifier | None = None,
    renderer: MessageRenderer | None = None,
    now: datetime | None = None,
    limit: int | None = None,
) -> BatchResult:
    now = now or utcnow()
    candidates = ScheduleStore(db).list_due(now, limit or settings.followup_batch_size)
    return await process_batch(db, candidates, "due", notifier, renderer, now)


async def process_all(
    db: Session,
    notifier: Notifier | None = None,
    renderer: MessageRenderer | None = None,
    now: datetime | None = None,
    limit: int | None = None,
) -> BatchResult:
    """Manual override: process pending schedules even if not yet due."""
    now = now or utcnow()
    candidates = ScheduleStore(db).list_pending(limit or settings.followup_batch_size)
    return await process_batch(db, candidates, "all", notifier, renderer, now)


async def process_batch(
    db: Session,
    candidates: list[FollowUpSchedule],
    mode: str,
    notifier: Notifier | None = None,
    renderer: MessageRenderer | None = None,
    now: datetime | None = None,
) -> BatchResult:
    """Run already-selected candidates through claim → dispatch → finalize."""
    now = now or utcnow()
    notifier = notifier or get_notifier()
    renderer = renderer or PlainTextRenderer()
    store = ScheduleStore(db)
    policy = RetryPolicy.from_settings()
    result = BatchResult(mode=mode, selected=len(candidates))

    for schedule in candidates:
        try:
            claimed = store.claim(schedule)
        except SQLAlchemyError as e:
            db.rollback()
            result.errors.append(f"schedule {schedule.id}: claim failed: {type(e).__name__}")
            log.error(f"Follow-up {schedule.id}: claim failed: {e}")
            continue
        if not claimed:
            result.skipped += 1
            continue
        result.processed += 1
        await _process_claimed(db, store, schedule, notifier, renderer, now, policy, result)

    if result.selected:
        log.info(
            f"Follow-up batch ({mode}): {result.sent} sent, {result.retried} retrying, "
            f"{result.failed} failed, {result.cancelled} cancelled, {result.skipped} skipped of {result.selected}"
        )
    return result


async def _process_claimed(db, store, schedule, notifier, renderer, now, policy, result):
    try:
        if _cancel_if_request_closed(db, store, schedule, result):
            return
    except SQLAlchemyError as e:
        _record_error(store, schedule, now, policy, result, e)
        return

    integrity_failure = False
    try:
        recipient, message = _prepare(db, schedule, renderer, now)
        if not is_valid_recipient(recipient):
            outcome = SendResult.permanent_failure(f"invalid_recipient: {recipient!r}")
        else:
            try:
                outcome = await asyncio.wait_for(
                    notifier.send(recipient, message.subject, message.body, message.context),
                    timeout=settings.dispatch_timeout_seconds,
                )
            except asyncio.TimeoutError:
                outcome = SendResult.transient(f"timeout after {settings.dispatch_timeout_seconds}s")
    except IntegrityViolation as e:
        db.rollback()
        integrity_failure = True
        outcome = SendResult.permanent_failure(f"integrity: {e}")
        result.errors.append(f"schedule {schedule.id}: {e}")
        log.error(f"Follow-up {schedule.id}: {e}")
    except Exception as e:
        db.rollback()
        outcome = SendResult.transient(f"error: {type(e).__name__}: {e}")
        result.errors.append(f"schedule {schedule.id}: {type(e).__name__}: {e}")
        log.error(f"Follow-up {schedule.id} processing error: {e}")

    try:
        _finalize(store, schedule, outcome, now, policy, result, force_terminal=integrity_failure)
    except SQLAlchemyError as e:
        _record_error(store, schedule, now, policy, result, e)


def _record_error(store, schedule, now, policy, result: BatchResult, exc: SQLAlchemyError):
    store.db.rollback()
    result.errors.append(f"schedule {schedule.id}: outcome not recorded: {type(exc).__name__}")
    log.error(f"Follow-up {schedule.id}: could not record outcome: {exc}")
    _release(store, schedule, now, policy, f"record_error: {type(exc).__name__}")


def _cancel_if_request_closed(db: Session, store, schedule: FollowUpSchedule, result: BatchResult) -> bool:
    """Cancel instead of sending when the request was completed or cancelled meanwhile."""
    request = db.get(ServiceRequest, schedule.request_id, populate_existing=True)
    if request is None or not request.status.is_terminal:
        return False
    won = store.transition(
        schedule,
        FollowUpStatus.PROCESSING,
        FollowUpStatus.CANCELLED,
        next_attempt_at=None,
        audit={
            "action": "followup_cancelled",
            "details": f"Request is {request.status.value}; follow-up not sent",
            "metadata": {"reason": "request_closed", "request_status": request.status.value},
        },
    )
    if won:
        result.cancelled += 1
        log.info(f"Follow-up {schedule.id} cancelled: request {request.id} is {request.status.value}")
    else:
        _lost_finalize(schedule, result)
    return True


def _prepare(db: Session, schedule: FollowUpSchedule, renderer: MessageRenderer, now: datetime):
    """Load what the message needs and render it. Returns (recipient, message)."""
    request = db.get(ServiceRequest, schedule.request_id)
    if request is None:
        raise IntegrityViolation(f"request {schedule.request_id} no longer exists")
    supplier = db.get(Supplier, schedule.supplier_id)
    if supplier is None:
        raise IntegrityViolation(f"supplier {schedule.supplier_id} no longer exists")

    meta = schedule.meta or {}
    context = {
        "schedule_id": schedule.id,
        "request_id": request.id,
        "kind": schedule.kind.value,
        "title": request.title,
        "supplier_name": supplier.name,
        "priority": schedule.priority.value,
        "attempt_number": (schedule.attempt_count or 0) + 1,
        "quotation_deadline": request.quotation_deadline.isoformat() if request.quotation_deadline else None,
        "work_date": meta.get("work_date"),
        "expected_completion": meta.get("expected_completion"),
        "portal_link": settings.portal_url,
    }
    if schedule.kind == FollowUpKind.QUOTATION_REMINDER:
        access = issue_access_code(
            db,
            supplier.id,
            request_id=request.id,
            ttl=timedelta(days=settings.reminder_access_code_ttl_days),
            now=now,
        )
        context["access_code"] = access.code
        context["portal_link"] = f"{settings.portal_url}?code={access.code}"
        log.debug(f"Follow-up {schedule.id}: issued access code {mask_code(access.code)}")

    return supplier.email, renderer.render(schedule.kind.value, context)


def _finalize(store, schedule, outcome: SendResult, now, policy, result: BatchResult, force_terminal=False):
    attempts = (schedule.attempt_count or 0) + 1
    meta = dict(schedule.meta or {})

    if outcome.success:
        values = {"attempt_count": attempts}
        if schedule.scheduled_for and schedule.scheduled_for > now:
            meta["original_scheduled_for"] = schedule.scheduled_for.isoformat()
            values["scheduled_for"] = now
        meta.pop("last_failure_reason", None)
        won = store.mark_sent(
            schedule,
            sent_at=now,
            meta=meta,
            audit={
                "action": "followup_sent",
                "details": f"{schedule.kind.value} sent (attempt {attempts})",
                "metadata": {"attempt": attempts},
            },
            **values,
        )
        if won:
            result.sent += 1
            log.info(f"Follow-up {schedule.id} ({schedule.kind.value}) sent, attempt {attempts}")
        else:
            _lost_finalize(schedule, result)
        return

    meta["last_failure_reason"] = outcome.reason
    terminal = force_terminal or (outcome.permanent and settings.permanent_failures_short_circuit)
    decision = None if terminal else compute_next_attempt(schedule, now, policy)

    if terminal or decision.is_terminal:
        won = store.mark_failed(
            schedule,
            attempt_count=attempts,
            meta=meta,
            audit={
                "action": "followup_failed",
                "details": f"{schedule.kind.value} failed after {attempts} attempt(s): {outcome.reason}",
                "metadata": {
                    "attempt": attempts,
                    "reason": outcome.reason,
                    "permanent": bool(outcome.permanent or force_terminal),
                },
            },
        )
        if won:
            result.failed += 1
            log.warning(f"Follow-up {schedule.id} failed permanently: {outcome.reason}")
        else:
            _lost_finalize(schedule, result)
        return

    won = store.mark_retry(
        schedule,
        next_attempt_at=decision.next_at,
        attempt_count=attempts,
        meta=meta,
        audit={
            "action": "followup_retry_scheduled",
            "details": f"Attempt {attempts} failed ({outcome.reason}); retry at {decision.next_at.isoformat()}",
            "metadata": {"attempt": attempts, "reason": outcome.reason},
        },
    )
    if won:
        result.retried += 1
        log.info(f"Follow-up {schedule.id} retry {attempts + 1} at {decision.next_at.isoformat()}")
    else:
        _lost_finalize(schedule, result)


def _lost_finalize(schedule, result: BatchResult):
    # We held the claim, so only an out-of-band write can get here
    msg = f"schedule {schedule.id}: outcome not recorded, row is now {schedule.status.value}"
    result.errors.append(msg)
    log.error(f"Follow-up {msg}")


def _release(store, schedule, now, policy, reason: str):
    """Hand a claimed schedule back to pending after its outcome could not be written."""
    meta = dict(schedule.meta or {})
    meta["last_failure_reason"] = reason
    retry_at = now + backoff(schedule.priority, schedule.attempt_count or 0, policy)
    try:
        released = store.transition(
            schedule,
            FollowUpStatus.PROCESSING,
            FollowUpStatus.PENDING,
            next_attempt_at=retry_at,
            meta=meta,
        )
    except SQLAlchemyError as e:
        store.db.rollback()
        log.error(f"Follow-up {schedule.id}: release failed, left in processing: {e}")
        return
    if released:
        log.warning(f"Follow-up {schedule.id} released for retry at {retry_at.isoformat()}")
