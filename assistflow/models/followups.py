"""Follow-up schedule — one pending reminder obligation per request + supplier."""

from sqlalchemy import JSON, CheckConstraint, Column, ForeignKey, Index, Integer
from sqlalchemy.orm import relationship

from ..database import UTCDateTime, utcnow
from .base import Base, enum_type
from .enums import FollowUpKind, FollowUpStatus, Priority


class FollowUpSchedule(Base):
    __tablename__ = "follow_up_schedules"
    id = Column(Integer, primary_key=True)
    request_id = Column(
        Integer, ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    kind = Column(enum_type(FollowUpKind), nullable=False)
    priority = Column(enum_type(Priority, 20), default=Priority.NORMAL, nullable=False)
    status = Column(enum_type(FollowUpStatus, 20), default=FollowUpStatus.PENDING, nullable=False)
    # pending → processing → sent | failed ; pending → cancelled ; failed → pending (reschedule)

    scheduled_for = Column(UTCDateTime, nullable=False)
    sent_at = Column(UTCDateTime)
    attempt_count = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    next_attempt_at = Column(UTCDateTime)

    # Audit context only; required fields live in real columns
    meta = Column("metadata", JSON, default=dict)

    # Bumped on every status write; the claim compare-and-set keys on it
    version = Column(Integer, default=1, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    request = relationship("ServiceRequest", foreign_keys=[request_id])
    supplier = relationship("Supplier", foreign_keys=[supplier_id])

    __table_args__ = (
        CheckConstraint("attempt_count >= 0", name="ck_followups_attempts_nonneg"),
        CheckConstraint("max_attempts >= 1", name="ck_followups_max_attempts"),
        CheckConstraint("attempt_count <= max_attempts", name="ck_followups_attempts_cap"),
        Index("ix_followups_status_due", "status", "scheduled_for"),
        Index("ix_followups_next_attempt", "status", "next_attempt_at"),
        Index("ix_followups_request", "request_id"),
        Index("ix_followups_supplier", "supplier_id"),
    )

    @property
    def due_at(self):
        return self.next_attempt_at or self.scheduled_for

    @property
    def is_exhausted(self) -> bool:
        return (self.attempt_count or 0) >= (self.max_attempts or 1)
