"""
schemas/workflow.py — Pydantic models for SLA, escalation and auto-approval endpoints

Business Rules:
- Amounts arrive as decimals; never compared as floats
- Manual escalation requires a reason (it lands in the audit trail)

Called by: routers/workflow.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from ..models import Priority


class SLASnapshotOut(BaseModel):
    total: int
    within_sla: int
    breached_sla: int
    critical_overdue: int
    average_response_time_hours: float
    compliance_rate: float
    window_days: int
    computed_at: datetime | None = None


class AutoApprovalEvaluate(BaseModel):
    amount: Decimal = Field(..., ge=0)
    priority: Priority
    threshold: Decimal | None = Field(None, gt=0)


class AutoApprovalDecisionOut(BaseModel):
    approve: bool
    reason: str
    amount: str
    threshold: str
    priority: Priority
    comparison: str


class ManualEscalation(BaseModel):
    reason: str
    actor: str = "operator"

    @field_validator("reason")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Escalation reason must not be blank")
        return v


class ClearEscalation(BaseModel):
    actor: str = "operator"


class RequestEscalationOut(BaseModel):
    id: int
    status: str
    priority: Priority
    escalation_level: int
    escalated_at: datetime | None = None


class ActivityOut(BaseModel):
    id: int
    action: str
    request_id: int | None = None
    supplier_id: int | None = None
    schedule_id: int | None = None
    actor: str
    details: str | None = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime | None = None
