"""
test_followup_service.py — Tests for services/followup_service.py

Covers: create_schedule validation and defaults, follow-ups created from
business events, cancel / reschedule rules, listing and processing stats.

Called by: pytest
Depends on: conftest.py (db_session, test_supplier, test_request, make_schedule)
"""

from datetime import datetime, timedelta, timezone

import pytest

from assistflow.exceptions import InvalidTransition, NotFoundError
from assistflow.models import ActivityLog, FollowUpKind, FollowUpStatus, Priority
from assistflow.services import followup_service as svc

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── create_schedule() ─────────────────────────────────────────────────


def test_create_defaults_priority_from_request(db_session, make_request, test_supplier):
    req = make_request(priority=Priority.URGENT)

    schedule = svc.create_schedule(
        db_session, req.id, test_supplier.id, FollowUpKind.QUOTATION_REMINDER, NOW + timedelta(hours=48)
    )

    assert schedule.status == FollowUpStatus.PENDING
    assert schedule.priority == Priority.URGENT
    assert schedule.attempt_count == 0
    assert schedule.max_attempts == 3
    assert schedule.version == 1
    assert db_session.query(ActivityLog).filter_by(action="followup_created", schedule_id=schedule.id).count() == 1


def test_create_accepts_explicit_priority_and_metadata(db_session, test_request, test_supplier):
    schedule = svc.create_schedule(
        db_session,
        test_request.id,
        test_supplier.id,
        "work_reminder",
        NOW,
        priority="critical",
        max_attempts=5,
        metadata={"work_date": "2026-03-05T08:00:00+00:00"},
    )
    assert schedule.kind == FollowUpKind.WORK_REMINDER
    assert schedule.priority == Priority.CRITICAL
    assert schedule.max_attempts == 5
    assert schedule.meta["work_date"] == "2026-03-05T08:00:00+00:00"


def test_create_unknown_request_or_supplier(db_session, test_request, test_supplier):
    with pytest.raises(NotFoundError):
        svc.create_schedule(db_session, 9999, test_supplier.id, FollowUpKind.QUOTATION_REMINDER, NOW)
    with pytest.raises(NotFoundError):
        svc.create_schedule(db_session, test_request.id, 9999, FollowUpKind.QUOTATION_REMINDER, NOW)


def test_create_rejects_unknown_kind(db_session, test_request, test_supplier):
    with pytest.raises(ValueError):
        svc.create_schedule(db_session, test_request.id, test_supplier.id, "fax_blast", NOW)


def test_create_rejects_non_positive_max_attempts(db_session, test_request, test_supplier):
    with pytest.raises(ValueError):
        svc.create_schedule(
            db_session, test_request.id, test_supplier.id, FollowUpKind.QUOTATION_REMINDER, NOW, max_attempts=-1
        )


# ── schedule_followups_for_event() ────────────────────────────────────


def test_assignment_creates_quotation_reminder(db_session, test_request):
    created = svc.schedule_followups_for_event(db_session, test_request, "assignment", now=NOW)

    assert len(created) == 1
    assert created[0].kind == FollowUpKind.QUOTATION_REMINDER
    assert created[0].scheduled_for == NOW + timedelta(hours=48)
    assert created[0].meta["trigger_event"] == "assignment"


def test_quotation_approved_creates_date_confirmation(db_session, test_request):
    created = svc.schedule_followups_for_event(db_session, test_request, "quotation_approved", now=NOW)
    assert created[0].kind == FollowUpKind.DATE_CONFIRMATION
    assert created[0].scheduled_for == NOW + timedelta(hours=24)


def test_work_scheduled_reminds_a_day_before(db_session, test_request):
    work_date = NOW + timedelta(days=3)
    created = svc.schedule_followups_for_event(
        db_session, test_request, "work_scheduled", now=NOW, metadata={"work_date": work_date.isoformat()}
    )
    assert created[0].kind == FollowUpKind.WORK_REMINDER
    assert created[0].scheduled_for == work_date - timedelta(hours=24)


def test_work_scheduled_soon_is_clamped_to_now(db_session, test_request):
    created = svc.schedule_followups_for_event(
        db_session, test_request, "work_scheduled", now=NOW, metadata={"work_date": (NOW + timedelta(hours=2)).isoformat()}
    )
    assert created[0].scheduled_for == NOW


def test_work_scheduled_requires_work_date(db_session, test_request):
    with pytest.raises(ValueError):
        svc.schedule_followups_for_event(db_session, test_request, "work_scheduled", now=NOW)


def test_work_started_creates_completion_reminder(db_session, test_request):
    expected = NOW + timedelta(days=2)
    created = svc.schedule_followups_for_event(
        db_session,
        test_request,
        "work_started",
        now=NOW,
        metadata={"expected_completion": expected.replace(tzinfo=None).isoformat()},
    )
    assert created[0].kind == FollowUpKind.COMPLETION_REMINDER
    assert created[0].scheduled_for == expected


def test_unknown_event_creates_nothing(db_session, test_request):
    assert svc.schedule_followups_for_event(db_session, test_request, "invoice_paid", now=NOW) == []


def test_event_without_supplier_is_rejected(db_session, make_request):
    req = make_request(assigned_supplier_id=None)
    with pytest.raises(InvalidTransition):
        svc.schedule_followups_for_event(db_session, req, "assignment", now=NOW)


# ── cancel_schedule() ─────────────────────────────────────────────────


def test_cancel_pending(db_session, make_schedule):
    schedule = make_schedule()

    cancelled = svc.cancel_schedule(db_session, schedule.id, actor="j.dupont")

    assert cancelled.status == FollowUpStatus.CANCELLED
    assert cancelled.version == 2
    audit = db_session.query(ActivityLog).filter_by(action="followup_cancelled").one()
    assert audit.actor == "j.dupont"


@pytest.mark.parametrize("status", [FollowUpStatus.SENT, FollowUpStatus.FAILED, FollowUpStatus.CANCELLED])
def test_cancel_rejects_non_pending(db_session, make_schedule, status):
    schedule = make_schedule(status=status)
    with pytest.raises(InvalidTransition):
        svc.cancel_schedule(db_session, schedule.id)


def test_cancel_unknown_schedule(db_session):
    with pytest.raises(NotFoundError):
        svc.cancel_schedule(db_session, 4242)


# ── reschedule_schedule() ─────────────────────────────────────────────


def test_reschedule_pending_moves_time(db_session, make_schedule):
    schedule = make_schedule(scheduled_for=NOW)
    new_time = NOW + timedelta(days=1)

    updated = svc.reschedule_schedule(db_session, schedule.id, new_time)

    assert updated.status == FollowUpStatus.PENDING
    assert updated.scheduled_for == new_time
    assert updated.next_attempt_at is None
    assert updated.meta["rescheduled_from"] == NOW.isoformat()


def test_reschedule_failed_with_attempts_left(db_session, make_schedule):
    schedule = make_schedule(status=FollowUpStatus.FAILED, attempt_count=1, max_attempts=3)

    updated = svc.reschedule_schedule(db_session, schedule.id, NOW + timedelta(hours=3))

    assert updated.status == FollowUpStatus.PENDING
    assert updated.attempt_count == 1
    audit = db_session.query(ActivityLog).filter_by(action="followup_rescheduled").one()
    assert audit.meta["previous_status"] == "failed"


def test_reschedule_exhausted_is_rejected(db_session, make_schedule):
    schedule = make_schedule(status=FollowUpStatus.FAILED, attempt_count=3, max_attempts=3)
    with pytest.raises(InvalidTransition):
        svc.reschedule_schedule(db_session, schedule.id, NOW + timedelta(hours=3))


@pytest.mark.parametrize("status", [FollowUpStatus.SENT, FollowUpStatus.CANCELLED, FollowUpStatus.PROCESSING])
def test_reschedule_rejects_final_or_in_flight(db_session, make_schedule, status):
    schedule = make_schedule(status=status)
    with pytest.raises(InvalidTransition):
        svc.reschedule_schedule(db_session, schedule.id, NOW)


def test_reschedule_recovers_stale_claim(db_session, make_schedule):
    schedule = make_schedule(status=FollowUpStatus.PROCESSING, updated_at=NOW - timedelta(hours=2), attempt_count=1)

    updated = svc.reschedule_schedule(db_session, schedule.id, NOW + timedelta(minutes=10), actor="ops", now=NOW)

    assert updated.status == FollowUpStatus.PENDING
    assert updated.attempt_count == 1
    assert updated.scheduled_for == NOW + timedelta(minutes=10)
    audit = db_session.query(ActivityLog).filter_by(action="followup_rescheduled").one()
    assert audit.meta["previous_status"] == "processing"
    assert audit.actor == "ops"


def test_reschedule_rejects_fresh_claim(db_session, make_schedule):
    schedule = make_schedule(status=FollowUpStatus.PROCESSING, updated_at=NOW - timedelta(minutes=1))

    with pytest.raises(InvalidTransition, match="being processed"):
        svc.reschedule_schedule(db_session, schedule.id, NOW + timedelta(minutes=10), now=NOW)

    db_session.refresh(schedule)
    assert schedule.status == FollowUpStatus.PROCESSING


# ── list_schedules() / get_processing_stats() ─────────────────────────


def test_list_filters(db_session, make_schedule):
    make_schedule(kind=FollowUpKind.QUOTATION_REMINDER, priority=Priority.NORMAL)
    make_schedule(kind=FollowUpKind.WORK_REMINDER, priority=Priority.CRITICAL)
    make_schedule(kind=FollowUpKind.WORK_REMINDER, status=FollowUpStatus.SENT)

    assert len(svc.list_schedules(db_session)) == 3
    assert len(svc.list_schedules(db_session, kind=FollowUpKind.WORK_REMINDER)) == 2
    assert len(svc.list_schedules(db_session, status=FollowUpStatus.PENDING)) == 2
    assert len(svc.list_schedules(db_session, priority=Priority.CRITICAL)) == 1
    assert len(svc.list_schedules(db_session, limit=1)) == 1


def test_processing_stats(db_session, make_schedule):
    make_schedule(scheduled_for=NOW - timedelta(minutes=5))
    make_schedule(scheduled_for=NOW + timedelta(hours=5), kind=FollowUpKind.WORK_REMINDER)
    make_schedule(
        scheduled_for=NOW - timedelta(hours=1),
        next_attempt_at=NOW + timedelta(minutes=30),
        attempt_count=1,
        priority=Priority.CRITICAL,
    )
    make_schedule(status=FollowUpStatus.SENT, sent_at=NOW - timedelta(hours=1), attempt_count=1)
    make_schedule(status=FollowUpStatus.SENT, sent_at=NOW - timedelta(days=2), attempt_count=1)
    make_schedule(status=FollowUpStatus.PROCESSING, updated_at=NOW - timedelta(hours=1))
    make_schedule(status=FollowUpStatus.PROCESSING, updated_at=NOW - timedelta(minutes=2))

    stats = svc.get_processing_stats(db_session, now=NOW)

    assert stats["total_pending"] == 3
    assert stats["due_now"] == 1
    assert stats["sent_today"] == 1
    assert stats["stuck_processing"] == 1
    assert stats["by_kind"]["work_reminder"] == 1
    assert stats["by_kind"]["quotation_reminder"] == 6
    assert stats["by_priority"]["critical"] == 1
    assert stats["by_kind"]["completion_reminder"] == 0
