"""
routers/access.py — Issue and validate supplier access codes

Business Rules:
- An invalid, expired or malformed code is a 200 with valid=False; the
  outcome field says why
- Client IP and user agent are recorded with every validation attempt

Called by: main.py (router registration)
Depends on: services/access_code_service.py
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import NotFoundError
from ..schemas.access import (
    AccessCodeIssue,
    AccessCodeOut,
    AccessCodeValidate,
    AccessValidationOut,
)
from ..services.access_code_service import issue_access_code, validate_access_code

router = APIRouter(tags=["access"])


@router.post("/api/access-codes", response_model=AccessCodeOut, status_code=201)
async def create_access_code(payload: AccessCodeIssue, db: Session = Depends(get_db)):
    ttl = timedelta(days=payload.ttl_days) if payload.ttl_days else None
    try:
        record = issue_access_code(db, payload.supplier_id, request_id=payload.request_id, ttl=ttl)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    return {
        "code": record.code,
        "supplier_id": record.supplier_id,
        "request_id": record.request_id,
        "issued_at": record.issued_at,
        "expires_at": record.expires_at,
    }


@router.post("/api/access-codes/validate", response_model=AccessValidationOut)
async def check_access_code(payload: AccessCodeValidate, request: Request, db: Session = Depends(get_db)):
    result = validate_access_code(
        db,
        payload.code,
        ip_address=request.client.host if request.client else None,
        user_agent=(request.headers.get("user-agent") or "")[:255] or None,
    )
    return {
        "valid": result.valid,
        "outcome": result.outcome.value,
        "extended": result.extended,
        "supplier_id": result.supplier_id,
        "request_id": result.request_id,
        "expires_at": result.expires_at,
    }
