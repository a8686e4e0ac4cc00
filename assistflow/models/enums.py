"""Closed enumerations for every status, priority and kind field."""

import enum


class Priority(str, enum.Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    def raised(self) -> "Priority":
        """Next priority up; critical stays critical."""
        order = list(Priority)
        return order[min(self.rank + 1, len(order) - 1)]


_PRIORITY_RANK = {Priority.NORMAL: 0, Priority.URGENT: 1, Priority.CRITICAL: 2}


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    SENT_TO_SUPPLIERS = "sent_to_suppliers"
    AWAITING_QUOTATION = "awaiting_quotation"
    QUOTATION_RECEIVED = "quotation_received"
    QUOTATION_APPROVED = "quotation_approved"
    QUOTATION_REJECTED = "quotation_rejected"
    AWAITING_APPROVAL = "awaiting_approval"
    ACCEPTED = "accepted"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    AWAITING_VALIDATION = "awaiting_validation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_REQUEST_STATUSES


TERMINAL_REQUEST_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED})


class QuotationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FollowUpKind(str, enum.Enum):
    QUOTATION_REMINDER = "quotation_reminder"
    DATE_CONFIRMATION = "date_confirmation"
    WORK_REMINDER = "work_reminder"
    COMPLETION_REMINDER = "completion_reminder"


class FollowUpStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AccessOutcome(str, enum.Enum):
    VALID = "valid"
    EXTENDED = "extended"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"
    NOT_YET_VALID = "not_yet_valid"
    MALFORMED = "malformed"
    ERROR = "error"
