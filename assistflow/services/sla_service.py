"""
sla_service.py — Rolling SLA compliance over a trailing window of requests.

Read-only. Nothing here is persisted; the snapshot is recomputed on demand.

Business Rules:
- total counts every request created inside the window
- Only requests carrying a response deadline are classified; the rest count
  toward total and nothing else
- within_sla: (terminal time, or now while open) <= deadline; else breached
- critical_overdue is the subset of breached requests with priority critical
- average_response_time_hours: mean of (terminal time − created_at) over
  terminal requests with a deadline; 0.0 when there are none
- compliance_rate: within / (within + breached); 100.0 when nothing is classified

Called by: routers/workflow.py (GET /api/sla)
Depends on: models
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from ..config import settings
from ..database import utcnow
from ..models import Priority, ServiceRequest

log = logging.getLogger("assistflow.sla")


@dataclass
class SLASnapshot:
    total: int = 0
    within_sla: int = 0
    breached_sla: int = 0
    critical_overdue: int = 0
    average_response_time_hours: float = 0.0
    window_days: int = 30
    computed_at: datetime | None = None

    @property
    def compliance_rate(self) -> float:
        """Share of classified requests within SLA, as a percentage."""
        classified = self.within_sla + self.breached_sla
        return round(self.within_sla / classified * 100, 1) if classified else 100.0

    def to_dict(self) -> dict:
        d = asdict(self)
        d["compliance_rate"] = self.compliance_rate
        return d


def compute_sla_snapshot(db: Session, window_days: int | None = None, now: datetime | None = None) -> SLASnapshot:
    now = now or utcnow()
    window_days = window_days or settings.sla_window_days
    since = now - timedelta(days=window_days)

    requests = db.query(ServiceRequest).filter(ServiceRequest.created_at >= since).all()

    snap = SLASnapshot(total=len(requests), window_days=window_days, computed_at=now)
    response_hours = []
    for r in requests:
        if r.response_deadline is None:
            continue
        finished = r.terminal_at
        if (finished or now) <= r.response_deadline:
            snap.within_sla += 1
        else:
            snap.breached_sla += 1
            if r.priority == Priority.CRITICAL:
                snap.critical_overdue += 1
        if finished is not None and r.created_at is not None:
            response_hours.append((finished - r.created_at).total_seconds() / 3600)

    if response_hours:
        snap.average_response_time_hours = round(sum(response_hours) / len(response_hours), 2)

    log.debug(
        f"SLA {window_days}d: {snap.within_sla}/{snap.total} within, "
        f"{snap.breached_sla} breached ({snap.critical_overdue} critical)"
    )
    return snap
