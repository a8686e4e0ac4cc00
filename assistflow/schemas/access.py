"""
schemas/access.py — Pydantic models for supplier access codes

Called by: routers/access.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class AccessCodeIssue(BaseModel):
    supplier_id: int
    request_id: int | None = None
    ttl_days: int | None = Field(None, ge=1, le=365)


class AccessCodeOut(BaseModel):
    code: str
    supplier_id: int
    request_id: int | None = None
    issued_at: datetime
    expires_at: datetime


class AccessCodeValidate(BaseModel):
    code: str = Field(..., max_length=64)


class AccessValidationOut(BaseModel):
    """Invalid codes are a normal response (valid=False), not an error."""
    valid: bool
    outcome: str
    extended: bool = False
    supplier_id: int | None = None
    request_id: int | None = None
    expires_at: datetime | None = None
