"""Background scheduler — the cadence that drives the follow-up engine.

APScheduler AsyncIOScheduler; every job is a thin wrapper that opens its own
session, calls one stateless service entry point and closes the session.
No business logic lives here.

Jobs:
  - followup_processing: every followup_interval_min — process_due()
  - escalation_sweep: every escalation_interval_min — run_escalation_sweep()
  - auto_approval: every auto_approval_interval_min (if enabled)
  - access_code_cleanup: daily at 03:00 UTC — purge_expired_codes()

Overlapping ticks are harmless: max_instances=1 per job here, and the
claim compare-and-set covers a manual trigger racing a tick.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

log = logging.getLogger("assistflow.scheduler")

scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
)


def configure_scheduler():
    """Register all jobs. Call once before scheduler.start()."""
    from .config import settings

    scheduler.add_job(
        _job_followup_processing,
        IntervalTrigger(minutes=settings.followup_interval_min),
        id="followup_processing",
        name="Process due follow-ups",
        replace_existing=True,
    )
    scheduler.add_job(
        _job_escalation_sweep,
        IntervalTrigger(minutes=settings.escalation_interval_min),
        id="escalation_sweep",
        name="Escalation sweep",
        replace_existing=True,
    )
    if settings.auto_approval_enabled:
        scheduler.add_job(
            _job_auto_approval,
            IntervalTrigger(minutes=settings.auto_approval_interval_min),
            id="auto_approval",
            name="Auto-approve low-value quotations",
            replace_existing=True,
        )
    scheduler.add_job(
        _job_access_code_cleanup,
        CronTrigger(hour=3, minute=0),
        id="access_code_cleanup",
        name="Purge expired access codes",
        replace_existing=True,
    )

    log.info(f"Scheduler configured with {len(scheduler.get_jobs())} jobs")


# ── Jobs ───────────────────────────────────────────────────────────────


async def _job_followup_processing():
    from .database import SessionLocal
    from .orchestrator import process_due

    db = SessionLocal()
    try:
        result = await process_due(db)
        if result.errors:
            log.warning(f"Follow-up processing finished with {len(result.errors)} error(s)")
    except Exception as e:
        log.error(f"Follow-up processing job error: {e}")
        db.rollback()
    finally:
        db.close()


async def _job_escalation_sweep():
    from .database import SessionLocal
    from .services.escalation_service import run_escalation_sweep
    from .services.notification_service import get_notifier

    db = SessionLocal()
    try:
        await run_escalation_sweep(db, notifier=get_notifier())
    except Exception as e:
        log.error(f"Escalation sweep job error: {e}")
        db.rollback()
    finally:
        db.close()


async def _job_auto_approval():
    from .database import SessionLocal
    from .services.auto_approval_service import run_auto_approvals

    db = SessionLocal()
    try:
        run_auto_approvals(db)
    except Exception as e:
        log.error(f"Auto-approval job error: {e}")
        db.rollback()
    finally:
        db.close()


async def _job_access_code_cleanup():
    from .database import SessionLocal
    from .services.access_code_service import purge_expired_codes

    db = SessionLocal()
    try:
        purge_expired_codes(db)
    except Exception as e:
        log.error(f"Access code cleanup job error: {e}")
        db.rollback()
    finally:
        db.close()
