"""Database models — re-exports all models.

Import from here:  from assistflow.models import FollowUpSchedule, ...
Or from submodules: from assistflow.models.followups import FollowUpSchedule
"""

from .base import Base  # noqa: F401

# Enumerations
from .enums import (  # noqa: F401
    AccessOutcome,
    FollowUpKind,
    FollowUpStatus,
    Priority,
    QuotationStatus,
    RequestStatus,
    TERMINAL_REQUEST_STATUSES,
)

# Suppliers, requests, quotations
from .assistance import Quotation, ServiceRequest, Supplier  # noqa: F401

# Follow-up schedules
from .followups import FollowUpSchedule  # noqa: F401

# Access codes
from .access import AccessAttempt, SupplierAccessCode  # noqa: F401

# Audit log
from .activity import ActivityLog  # noqa: F401
