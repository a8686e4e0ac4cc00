"""Service-layer errors. Routers translate these into HTTP responses."""


class AssistFlowError(Exception):
    """Base class for errors raised by the services."""


class NotFoundError(AssistFlowError, LookupError):
    """A referenced schedule, request, supplier or quotation does not exist."""


class InvalidTransition(AssistFlowError, ValueError):
    """The requested status change is not allowed from the current status."""


class IntegrityViolation(AssistFlowError):
    """A record is missing data it must have (request, supplier, recipient)."""
