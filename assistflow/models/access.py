"""Supplier magic codes and the validation attempt log."""

from sqlalchemy import Column, ForeignKey, Index, Integer, String

from ..database import UTCDateTime, utcnow
from .base import Base, enum_type
from .enums import AccessOutcome


class SupplierAccessCode(Base):
    __tablename__ = "supplier_access_codes"
    id = Column(Integer, primary_key=True)
    code = Column(String(32), nullable=False, unique=True)
    supplier_id = Column(
        Integer, ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False
    )
    request_id = Column(Integer, ForeignKey("service_requests.id", ondelete="SET NULL"))
    issued_at = Column(UTCDateTime, default=utcnow, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    last_used_at = Column(UTCDateTime)
    access_count = Column(Integer, default=0, nullable=False)
    extension_count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("ix_access_codes_supplier", "supplier_id"),
        Index("ix_access_codes_expires", "expires_at"),
    )


class AccessAttempt(Base):
    """Append-only: one row per validation attempt, whatever the outcome."""

    __tablename__ = "access_attempts"
    id = Column(Integer, primary_key=True)
    attempted_at = Column(UTCDateTime, default=utcnow, nullable=False)
    code_prefix = Column(String(16), nullable=False)
    outcome = Column(enum_type(AccessOutcome, 20), nullable=False)
    supplier_id = Column(Integer)
    ip_address = Column(String(64))
    user_agent = Column(String(255))

    __table_args__ = (
        Index("ix_access_attempts_time", "attempted_at"),
        Index("ix_access_attempts_outcome", "outcome", "attempted_at"),
    )
