"""
schemas/followups.py — Pydantic models for follow-up schedule endpoints

Business Rules:
- kind and priority are closed enums; unknown values are a 422
- scheduled_for / new_time must carry a timezone (naive times are ambiguous)
- max_attempts >= 1

Called by: routers/followups.py
Depends on: pydantic, models.enums
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from ..models import FollowUpKind, FollowUpStatus, Priority


def _require_tz(v: datetime) -> datetime:
    if v.tzinfo is None:
        raise ValueError("Timestamp must include a timezone offset")
    return v


class FollowUpCreate(BaseModel):
    request_id: int
    supplier_id: int
    kind: FollowUpKind
    scheduled_for: datetime
    priority: Priority | None = None
    max_attempts: int | None = Field(None, ge=1, le=20)
    metadata: dict = Field(default_factory=dict)

    @field_validator("scheduled_for")
    @classmethod
    def tz_aware(cls, v: datetime) -> datetime:
        return _require_tz(v)


class FollowUpReschedule(BaseModel):
    new_time: datetime

    @field_validator("new_time")
    @classmethod
    def tz_aware(cls, v: datetime) -> datetime:
        return _require_tz(v)


class FollowUpOut(BaseModel):
    id: int
    request_id: int
    supplier_id: int
    kind: FollowUpKind
    priority: Priority
    status: FollowUpStatus
    scheduled_for: datetime
    sent_at: datetime | None = None
    attempt_count: int
    max_attempts: int
    next_attempt_at: datetime | None = None
    metadata: dict = Field(default_factory=dict)
    version: int


class BatchResultOut(BaseModel):
    mode: str
    selected: int = 0
    processed: int = 0
    sent: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
    cancelled: int = 0
    errors: list[str] = Field(default_factory=list)


class ProcessingStats(BaseModel):
    total_pending: int = 0
    due_now: int = 0
    sent_today: int = 0
    failed_today: int = 0
    stuck_processing: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)
