"""Suppliers, service requests (assistances) and their quotations."""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from ..database import UTCDateTime, utcnow
from .base import Base, enum_type
from .enums import Priority, QuotationStatus, RequestStatus


class Supplier(Base):
    __tablename__ = "suppliers"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(50))
    specialization = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow)


class ServiceRequest(Base):
    """A maintenance request a supplier must respond to, quote and execute."""

    __tablename__ = "service_requests"
    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(enum_type(RequestStatus), default=RequestStatus.PENDING, nullable=False)
    priority = Column(enum_type(Priority, 20), default=Priority.NORMAL, nullable=False)
    assigned_supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))

    response_deadline = Column(UTCDateTime)
    quotation_deadline = Column(UTCDateTime)

    # Last applied escalation level (0..3); only ever raised while unresolved
    escalation_level = Column(Integer, default=0, nullable=False)
    escalated_at = Column(UTCDateTime)

    completed_at = Column(UTCDateTime)
    cancelled_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    assigned_supplier = relationship("Supplier", foreign_keys=[assigned_supplier_id])
    quotations = relationship("Quotation", back_populates="request")

    __table_args__ = (
        Index("ix_requests_status", "status"),
        Index("ix_requests_created", "created_at"),
        Index("ix_requests_deadline", "response_deadline"),
    )

    @property
    def terminal_at(self):
        """When the request reached completed/cancelled, or None while open."""
        if self.status == RequestStatus.COMPLETED:
            return self.completed_at or self.updated_at
        if self.status == RequestStatus.CANCELLED:
            return self.cancelled_at or self.updated_at
        return None


class Quotation(Base):
    """A supplier's quote — the monetary decision subject to approval."""

    __tablename__ = "quotations"
    id = Column(Integer, primary_key=True)
    request_id = Column(
        Integer, ForeignKey("service_requests.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(enum_type(QuotationStatus, 20), default=QuotationStatus.PENDING, nullable=False)
    notes = Column(Text)
    approved_at = Column(UTCDateTime)
    approved_by = Column(String(100))
    created_at = Column(UTCDateTime, default=utcnow)

    request = relationship("ServiceRequest", back_populates="quotations")
    supplier = relationship("Supplier", foreign_keys=[supplier_id])

    __table_args__ = (
        Index("ix_quotations_request", "request_id"),
        Index("ix_quotations_status", "status"),
    )
