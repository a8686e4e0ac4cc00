"""Append-only audit / activity log."""

from sqlalchemy import JSON, Column, Index, Integer, String, Text

from ..database import UTCDateTime, utcnow
from .base import Base


class ActivityLog(Base):
    __tablename__ = "activity_log"
    id = Column(Integer, primary_key=True)
    action = Column(String(50), nullable=False)
    # auto_escalated | manual_escalated | escalation_cleared | auto_approved
    # followup_created | followup_sent | followup_failed | followup_retry_scheduled
    # followup_cancelled | followup_rescheduled | access_code_issued | access_extended
    request_id = Column(Integer)
    supplier_id = Column(Integer)
    schedule_id = Column(Integer)
    actor = Column(String(100), default="system", nullable=False)
    details = Column(Text)
    meta = Column("metadata", JSON, default=dict)
    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("ix_activity_request", "request_id", "created_at"),
        Index("ix_activity_action", "action", "created_at"),
        Index("ix_activity_schedule", "schedule_id"),
    )
