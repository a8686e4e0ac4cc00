"""
access_code_service.py — Supplier magic codes: issue, validate, extend, purge.

Suppliers act on requests through links in e-mails that may sit unread for
days. A code stays valid until expires_at, then enters a bounded grace
window in which it is still accepted and its expiry slides forward.

Business Rules:
- Codes are 8 upper-case alphanumerics drawn with `secrets` (uniform)
- Validation is case-insensitive and never raises; failures are typed results
- Valid in [issued_at, expires_at]; valid + extended in (expires_at, expires_at + grace]
- The extension is one conditional UPDATE keyed on the observed expires_at,
  so two near-simultaneous validations cannot both extend
- Every attempt is written to access_attempts; a failed attempt write is
  logged and never changes the decision

Called by: routers/access.py, orchestrator (fresh code in quotation reminders),
           scheduler (purge job)
Depends on: models, config, activity_service
"""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import utcnow
from ..exceptions import NotFoundError
from ..models import AccessAttempt, AccessOutcome, Supplier, SupplierAccessCode
from .activity_service import log_activity

log = logging.getLogger("assistflow.access")

CODE_ALPHABET = string.ascii_uppercase + string.digits
_MAX_ISSUE_TRIES = 5


@dataclass
class AccessValidation:
    valid: bool
    outcome: AccessOutcome
    supplier_id: int | None = None
    request_id: int | None = None
    expires_at: datetime | None = None

    @property
    def extended(self) -> bool:
        return self.outcome == AccessOutcome.EXTENDED


def generate_code(length: int | None = None) -> str:
    length = length or settings.access_code_length
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code) -> str | None:
    """Upper-case and strip; None when the input cannot be a code."""
    if not isinstance(code, str):
        return None
    code = code.strip().upper()
    if not code or len(code) > 32 or not all(c in CODE_ALPHABET for c in code):
        return None
    return code


def mask_code(code) -> str:
    """Loggable prefix — never log a full code."""
    text = code if isinstance(code, str) else ""
    return f"{text.strip()[:4].upper()}***"


def grace_period() -> timedelta:
    return timedelta(hours=settings.access_code_grace_hours)


# ── Issue ─────────────────────────────────────────────────────────────


def issue_access_code(
    db: Session,
    supplier_id: int,
    request_id: int | None = None,
    ttl: timedelta | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> SupplierAccessCode:
    """Create and persist a new code for one supplier (optionally one request)."""
    now = now or utcnow()
    ttl = ttl if ttl is not None else timedelta(days=settings.access_code_ttl_days)

    if db.get(Supplier, supplier_id) is None:
        raise NotFoundError(f"Supplier {supplier_id} not found")

    for _ in range(_MAX_ISSUE_TRIES):
        code = generate_code()
        if db.query(SupplierAccessCode.id).filter_by(code=code).first() is None:
            break
    else:
        raise RuntimeError("Could not generate a unique access code")

    record = SupplierAccessCode(
        code=code,
        supplier_id=supplier_id,
        request_id=request_id,
        issued_at=now,
        expires_at=now + ttl,
    )
    db.add(record)
    log_activity(
        db,
        "access_code_issued",
        request_id=request_id,
        supplier_id=supplier_id,
        details=f"Access code {mask_code(code)} issued",
        metadata={"expires_at": record.expires_at.isoformat()},
    )
    try:
        if commit:
            db.commit()
        else:
            db.flush()
    except IntegrityError:
        db.rollback()
        raise
    log.info(f"Access code {mask_code(code)} issued for supplier {supplier_id}")
    return record


# ── Validate ──────────────────────────────────────────────────────────


def validate_access_code(
    db: Session,
    code,
    now: datetime | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AccessValidation:
    """Validate a code; extends it when inside the grace window. Never raises."""
    now = now or utcnow()
    normalized = normalize_code(code)

    if normalized is None:
        result = AccessValidation(valid=False, outcome=AccessOutcome.MALFORMED)
    else:
        try:
            result = _check_and_touch(db, normalized, now)
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Access code validation error for {mask_code(code)}: {e}")
            result = AccessValidation(valid=False, outcome=AccessOutcome.ERROR)

    _record_attempt(db, code, result, now, ip_address, user_agent)
    return result


def _check_and_touch(db: Session, code: str, now: datetime) -> AccessValidation:
    record = (
        db.query(SupplierAccessCode).filter_by(code=code).populate_existing().first()
    )
    if record is None:
        return AccessValidation(valid=False, outcome=AccessOutcome.NOT_FOUND)

    base = dict(supplier_id=record.supplier_id, request_id=record.request_id)

    if now < record.issued_at:
        return AccessValidation(valid=False, outcome=AccessOutcome.NOT_YET_VALID, **base)

    if now <= record.expires_at:
        _touch(db, record.id, now)
        db.commit()
        return AccessValidation(
            valid=True, outcome=AccessOutcome.VALID, expires_at=record.expires_at, **base
        )

    if now > record.expires_at + grace_period():
        return AccessValidation(
            valid=False, outcome=AccessOutcome.EXPIRED, expires_at=record.expires_at, **base
        )

    return _extend(db, record, now, base)


def _touch(db: Session, record_id: int, now: datetime) -> None:
    db.query(SupplierAccessCode).filter(SupplierAccessCode.id == record_id).update(
        {
            "last_used_at": now,
            "access_count": SupplierAccessCode.access_count + 1,
        },
        synchronize_session=False,
    )


def _extend(db: Session, record: SupplierAccessCode, now: datetime, base: dict) -> AccessValidation:
    """Slide expiry to now + grace with a compare-and-set on the observed expiry."""
    observed = record.expires_at
    new_expiry = now + grace_period()
    won = (
        db.query(SupplierAccessCode)
        .filter(
            SupplierAccessCode.id == record.id,
            SupplierAccessCode.expires_at == observed,
        )
        .update(
            {
                "expires_at": new_expiry,
                "extension_count": SupplierAccessCode.extension_count + 1,
                "last_used_at": now,
                "access_count": SupplierAccessCode.access_count + 1,
            },
            synchronize_session=False,
        )
    )

    if won:
        log_activity(
            db,
            "access_extended",
            request_id=record.request_id,
            supplier_id=record.supplier_id,
            details=f"Access code {mask_code(record.code)} used in grace window, expiry extended",
            metadata={
                "previous_expires_at": observed.isoformat(),
                "new_expires_at": new_expiry.isoformat(),
            },
        )
        db.commit()
        db.refresh(record)
        log.info(f"Access code {mask_code(record.code)} extended to {new_expiry.isoformat()}")
        return AccessValidation(
            valid=True, outcome=AccessOutcome.EXTENDED, expires_at=new_expiry, **base
        )

    # Another validation extended it first; accept on the fresh expiry
    db.rollback()
    db.refresh(record)
    if now <= record.expires_at:
        _touch(db, record.id, now)
        db.commit()
        return AccessValidation(
            valid=True, outcome=AccessOutcome.VALID, expires_at=record.expires_at, **base
        )
    return AccessValidation(
        valid=False, outcome=AccessOutcome.EXPIRED, expires_at=record.expires_at, **base
    )


def _record_attempt(db, code, result, now, ip_address, user_agent) -> None:
    """Append to access_attempts. Failures are logged, never raised."""
    prefix = mask_code(code)
    log.info(f"Access code validation {prefix}: {result.outcome.value}")
    try:
        db.add(
            AccessAttempt(
                attempted_at=now,
                code_prefix=prefix,
                outcome=result.outcome,
                supplier_id=result.supplier_id,
                ip_address=(ip_address or "")[:64] or None,
                user_agent=(user_agent or "")[:255] or None,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning(f"Could not record access attempt for {prefix}: {e}")


# ── Housekeeping ──────────────────────────────────────────────────────


def purge_expired_codes(db: Session, now: datetime | None = None) -> int:
    """Delete codes past their grace window for longer than the retention period."""
    now = now or utcnow()
    cutoff = now - grace_period() - timedelta(days=settings.access_code_retention_days)
    deleted = (
        db.query(SupplierAccessCode)
        .filter(SupplierAccessCode.expires_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        log.info(f"Purged {deleted} expired access code(s)")
    return deleted
