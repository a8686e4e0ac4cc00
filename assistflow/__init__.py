"""AssistFlow — supplier follow-up, escalation and SLA engine."""

__version__ = "1.0.0"
