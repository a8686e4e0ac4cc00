"""
auto_approval_service.py — Automatic approval of low-value quotations.

Rule: approve iff amount < threshold AND priority != critical. Critical
requests always go to a human, whatever the amount.

Business Rules:
- Amounts are compared as Decimal, never float
- Approval is a conditional UPDATE (pending → approved); a quotation that a
  human approved or rejected meanwhile is left alone
- Every automatic approval writes an `auto_approved` audit entry with the
  amount, threshold, the exact comparison and the reason

Called by: scheduler.py (periodic run), routers/workflow.py
Depends on: models, config, activity_service
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import Session

from ..config import settings
from ..database import utcnow
from ..models import Priority, Quotation, QuotationStatus
from .activity_service import log_activity

log = logging.getLogger("assistflow.approval")

_CENTS = Decimal("0.01")


@dataclass
class AutoApprovalDecision:
    approve: bool
    reason: str
    amount: Decimal
    threshold: Decimal
    priority: Priority

    @property
    def comparison(self) -> str:
        op = "<" if self.amount < self.threshold else ">="
        return f"{self.amount:.2f} {op} {self.threshold:.2f}"


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def evaluate_auto_approval(amount, priority, threshold=None) -> AutoApprovalDecision:
    amount = _money(amount)
    threshold = _money(settings.auto_approval_threshold if threshold is None else threshold)
    priority = Priority(priority)

    if priority == Priority.CRITICAL:
        return AutoApprovalDecision(False, "critical_priority", amount, threshold, priority)
    if amount < threshold:
        return AutoApprovalDecision(True, "under_threshold", amount, threshold, priority)
    return AutoApprovalDecision(False, "over_threshold", amount, threshold, priority)


def apply_auto_approval(
    db: Session, quotation: Quotation, now: datetime | None = None, threshold=None
) -> AutoApprovalDecision:
    """Evaluate one quotation and approve it when the rule allows.

    The decision is returned either way; `approve` is False when the rule
    said no or another actor changed the quotation first.
    """
    now = now or utcnow()
    request = quotation.request
    priority = request.priority if request is not None else Priority.NORMAL
    decision = evaluate_auto_approval(quotation.amount, priority, threshold)
    if not decision.approve:
        return decision

    won = (
        db.query(Quotation)
        .filter(Quotation.id == quotation.id, Quotation.status == QuotationStatus.PENDING)
        .update(
            {
                "status": QuotationStatus.APPROVED,
                "approved_at": now,
                "approved_by": "system",
            },
            synchronize_session=False,
        )
    )
    if not won:
        db.rollback()
        log.info(f"Quotation {quotation.id} no longer pending; auto-approval skipped")
        decision.approve = False
        decision.reason = "not_pending"
        return decision

    log_activity(
        db,
        "auto_approved",
        request_id=quotation.request_id,
        supplier_id=quotation.supplier_id,
        details=f"Quotation approved automatically ({decision.comparison})",
        metadata={
            "quotation_id": quotation.id,
            "amount": str(decision.amount),
            "threshold": str(decision.threshold),
            "comparison": decision.comparison,
            "priority": decision.priority.value,
            "reason": decision.reason,
        },
    )
    db.commit()
    db.refresh(quotation)
    log.info(f"Quotation {quotation.id} auto-approved: {decision.comparison}")
    return decision


def run_auto_approvals(db: Session, now: datetime | None = None) -> dict:
    """Evaluate every pending quotation once."""
    now = now or utcnow()
    result = {"evaluated": 0, "approved": 0, "skipped": 0, "errors": 0}
    pending = (
        db.query(Quotation)
        .filter(Quotation.status == QuotationStatus.PENDING)
        .order_by(Quotation.id)
        .all()
    )
    for quotation in pending:
        result["evaluated"] += 1
        try:
            if apply_auto_approval(db, quotation, now).approve:
                result["approved"] += 1
            else:
                result["skipped"] += 1
        except Exception as e:
            db.rollback()
            result["errors"] += 1
            log.error(f"Auto-approval failed for quotation {quotation.id}: {e}")
    if result["approved"]:
        log.info(f"Auto-approval: {result['approved']} of {result['evaluated']} pending approved")
    return result
