"""
schedule_store.py — Narrow adapter over the durable store for follow-up schedules.

Every status write is a conditional UPDATE keyed on the row's current
status AND version. A rowcount of 0 means another run got there first;
that is reported as False, never raised. This compare-and-set is the only
synchronization between overlapping processing runs.

Business Rules:
- claim(): pending → processing, committed immediately so other runs see it
- Audit entries passed to transition() commit in the same transaction as
  the status change, and are discarded if the change loses its race
- Schedules are never deleted

Called by: orchestrator, followup_service
Depends on: models, activity_service
"""

import logging
from datetime import datetime

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from ..database import utcnow
from ..models import FollowUpSchedule, FollowUpStatus
from .activity_service import log_activity

log = logging.getLogger("assistflow.store")


class ScheduleStore:
    def __init__(self, db: Session):
        self.db = db

    # ── Reads ──────────────────────────────────────────────────────────

    def get(self, schedule_id: int) -> FollowUpSchedule | None:
        return (
            self.db.query(FollowUpSchedule)
            .filter(FollowUpSchedule.id == schedule_id)
            .populate_existing()
            .first()
        )

    def _pending_query(self):
        return (
            self.db.query(FollowUpSchedule)
            .filter(
                FollowUpSchedule.status == FollowUpStatus.PENDING,
                FollowUpSchedule.attempt_count < FollowUpSchedule.max_attempts,
            )
            .populate_existing()
        )

    def list_due(self, now: datetime, limit: int) -> list[FollowUpSchedule]:
        """Pending schedules whose retry time (or, if none, scheduled time) has passed."""
        due_at = func.coalesce(FollowUpSchedule.next_attempt_at, FollowUpSchedule.scheduled_for)
        return (
            self._pending_query()
            .filter(
                or_(
                    and_(
                        FollowUpSchedule.next_attempt_at.is_(None),
                        FollowUpSchedule.scheduled_for <= now,
                    ),
                    FollowUpSchedule.next_attempt_at <= now,
                )
            )
            .order_by(due_at.asc(), FollowUpSchedule.id.asc())
            .limit(limit)
            .all()
        )

    def list_pending(self, limit: int) -> list[FollowUpSchedule]:
        """All pending schedules regardless of time (manual override / backfill)."""
        due_at = func.coalesce(FollowUpSchedule.next_attempt_at, FollowUpSchedule.scheduled_for)
        return (
            self._pending_query()
            .order_by(due_at.asc(), FollowUpSchedule.id.asc())
            .limit(limit)
            .all()
        )

    def search(self, status=None, kind=None, priority=None, limit: int = 200) -> list[FollowUpSchedule]:
        q = self.db.query(FollowUpSchedule)
        if status is not None:
            q = q.filter(FollowUpSchedule.status == status)
        if kind is not None:
            q = q.filter(FollowUpSchedule.kind == kind)
        if priority is not None:
            q = q.filter(FollowUpSchedule.priority == priority)
        return q.order_by(FollowUpSchedule.scheduled_for.asc()).limit(limit).all()

    # ── Writes ─────────────────────────────────────────────────────────

    def create(self, audit: dict | None = None, **fields) -> FollowUpSchedule:
        schedule = FollowUpSchedule(**fields)
        self.db.add(schedule)
        self.db.flush()
        if audit:
            self.append_audit(schedule, **audit)
        self.db.commit()
        self.db.refresh(schedule)
        return schedule

    def append_audit(self, schedule: FollowUpSchedule, action: str, details: str = "", metadata: dict | None = None, actor: str = "system"):
        return log_activity(
            self.db,
            action,
            request_id=schedule.request_id,
            supplier_id=schedule.supplier_id,
            schedule_id=schedule.id,
            details=details,
            metadata=metadata,
            actor=actor,
        )

    def transition(
        self,
        schedule: FollowUpSchedule,
        expected,
        new_status: FollowUpStatus,
        audit: dict | None = None,
        **values,
    ) -> bool:
        """Conditionally move `schedule` from one of `expected` to `new_status`.

        Returns False (and writes nothing) when the row's status or version
        changed since `schedule` was read.
        """
        if isinstance(expected, FollowUpStatus):
            expected = {expected}
        observed_version = schedule.version
        changes = {
            "status": new_status,
            "version": FollowUpSchedule.version + 1,
            "updated_at": utcnow(),
        }
        changes.update(values)

        won = (
            self.db.query(FollowUpSchedule)
            .filter(
                FollowUpSchedule.id == schedule.id,
                FollowUpSchedule.status.in_(list(expected)),
                FollowUpSchedule.version == observed_version,
            )
            .update(changes, synchronize_session=False)
        )
        if not won:
            self.db.rollback()
            self.db.refresh(schedule)
            log.debug(
                f"Schedule {schedule.id}: lost transition to {new_status.value} "
                f"(now {schedule.status.value}, v{schedule.version})"
            )
            return False

        if audit:
            self.append_audit(schedule, **audit)
        self.db.commit()
        self.db.refresh(schedule)
        return True

    def claim(self, schedule: FollowUpSchedule) -> bool:
        """Atomically take ownership of a pending schedule for this run."""
        return self.transition(schedule, FollowUpStatus.PENDING, FollowUpStatus.PROCESSING)

    # ── Outcomes (from processing only) ────────────────────────────────

    def mark_sent(self, schedule: FollowUpSchedule, sent_at: datetime, audit: dict | None = None, **values) -> bool:
        return self.transition(
            schedule,
            FollowUpStatus.PROCESSING,
            FollowUpStatus.SENT,
            audit=audit,
            sent_at=sent_at,
            next_attempt_at=None,
            **values,
        )

    def mark_failed(self, schedule: FollowUpSchedule, audit: dict | None = None, **values) -> bool:
        """Terminal failure: no further attempts are scheduled."""
        return self.transition(
            schedule,
            FollowUpStatus.PROCESSING,
            FollowUpStatus.FAILED,
            audit=audit,
            next_attempt_at=None,
            **values,
        )

    def mark_retry(self, schedule: FollowUpSchedule, next_attempt_at: datetime, audit: dict | None = None, **values) -> bool:
        """Back to pending, not selectable by process_due before next_attempt_at."""
        return self.transition(
            schedule,
            FollowUpStatus.PROCESSING,
            FollowUpStatus.PENDING,
            audit=audit,
            next_attempt_at=next_attempt_at,
            **values,
        )
