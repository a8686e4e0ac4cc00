"""Notification dispatch — the narrow seam to whatever actually delivers mail.

The engine never builds HTML. It hands structured data to a renderer
(`MessageRenderer`) and the rendered subject/body to a `Notifier`.

Backends:
  - LogNotifier: development default, logs the message and reports success
  - WebhookNotifier: POSTs JSON to a delivery service; classifies failures

Business Rules:
- A Notifier never raises for delivery problems; it returns SendResult
- 4xx responses (except 408/429) are permanent; 5xx, 408, 429 and network
  errors are transient and go through retry/backoff
- Malformed recipients are permanent failures, caught before dispatch
- Operator recipients come from configuration, never from code

Called by: orchestrator, escalation_service
Depends on: http_client, config
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from ..config import settings
from ..models import FollowUpKind, Priority

log = logging.getLogger("assistflow.notify")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TRANSIENT_4XX = {408, 429}


@dataclass
class SendResult:
    success: bool
    reason: str = ""
    permanent: bool = False

    @classmethod
    def ok(cls) -> "SendResult":
        return cls(success=True)

    @classmethod
    def transient(cls, reason: str) -> "SendResult":
        return cls(success=False, reason=reason, permanent=False)

    @classmethod
    def permanent_failure(cls, reason: str) -> "SendResult":
        return cls(success=False, reason=reason, permanent=True)


@dataclass
class RenderedMessage:
    subject: str
    body: str
    context: dict = field(default_factory=dict)


class Notifier(Protocol):
    async def send(self, recipient: str, subject: str, body: str, context: dict | None = None) -> SendResult:
        ...


class MessageRenderer(Protocol):
    def render(self, template: str, context: dict) -> RenderedMessage:
        ...


def is_valid_recipient(address) -> bool:
    return isinstance(address, str) and bool(_EMAIL_RE.match(address.strip()))


# ── Backends ──────────────────────────────────────────────────────────


class LogNotifier:
    """Writes the message to the log instead of delivering it."""

    async def send(self, recipient, subject, body, context=None) -> SendResult:
        log.info(f"[notify:log] to={recipient} subject={subject!r}")
        return SendResult.ok()


class WebhookNotifier:
    """Delivers through an HTTP mail relay: POST {to, subject, body, context}."""

    def __init__(self, url: str, token: str = "", client: httpx.AsyncClient | None = None, timeout: float = 15):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            from ..http_client import http

            self._client = http
        return self._client

    async def send(self, recipient, subject, body, context=None) -> SendResult:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = {"to": recipient, "subject": subject, "body": body, "context": context or {}}
        try:
            r = await self.client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            log.warning(f"Notifier webhook error for {recipient}: {e}")
            return SendResult.transient(f"network: {type(e).__name__}")

        if 200 <= r.status_code < 300:
            return SendResult.ok()
        reason = f"http_{r.status_code}: {r.text[:200]}"
        if 400 <= r.status_code < 500 and r.status_code not in _TRANSIENT_4XX:
            log.warning(f"Notifier rejected message to {recipient}: {reason}")
            return SendResult.permanent_failure(reason)
        log.warning(f"Notifier unavailable for {recipient}: {reason}")
        return SendResult.transient(reason)


def get_notifier() -> Notifier:
    """Notifier for the configured backend. FastAPI dependency and job helper."""
    if settings.notifier_backend == "webhook":
        if not settings.notifier_webhook_url:
            log.warning("notifier_backend=webhook but no notifier_webhook_url — using log backend")
            return LogNotifier()
        return WebhookNotifier(settings.notifier_webhook_url, settings.notifier_webhook_token)
    return LogNotifier()


# ── Recipients ────────────────────────────────────────────────────────


class OperatorRecipientResolver:
    """Who receives operator-facing alerts (escalations)."""

    def __init__(self, emails: list[str] | None = None):
        self._emails = emails

    def resolve(self) -> list[str]:
        emails = self._emails if self._emails is not None else settings.operator_emails
        valid = [e.strip() for e in emails if is_valid_recipient(e)]
        if len(valid) != len(emails):
            log.warning("Ignoring malformed operator e-mail address(es) in configuration")
        return valid


# ── Rendering ─────────────────────────────────────────────────────────

_PRIORITY_LABELS = {
    Priority.NORMAL: "NORMAL",
    Priority.URGENT: "URGENT",
    Priority.CRITICAL: "CRITICAL",
}

_SUBJECTS = {
    FollowUpKind.QUOTATION_REMINDER.value: "{reminder_prefix}Reminder: quotation requested — {title}",
    FollowUpKind.DATE_CONFIRMATION.value: "Please confirm the intervention date — {title}",
    FollowUpKind.WORK_REMINDER.value: "Reminder: scheduled work — {title}",
    FollowUpKind.COMPLETION_REMINDER.value: "Please confirm completion — {title}",
    "escalation": "ESCALATION (level {level}): no supplier response — {title}",
}

_BODIES = {
    FollowUpKind.QUOTATION_REMINDER.value: (
        "Dear {supplier_name},\n\n"
        "We are still waiting for your quotation for \"{title}\" (priority {priority_label}).\n"
        "{deadline_line}"
        "Submit it through the supplier portal: {portal_link}\n"
    ),
    FollowUpKind.DATE_CONFIRMATION.value: (
        "Dear {supplier_name},\n\n"
        "Your quotation for \"{title}\" was approved. Please confirm the intervention date.\n"
        "Supplier portal: {portal_link}\n"
    ),
    FollowUpKind.WORK_REMINDER.value: (
        "Dear {supplier_name},\n\n"
        "Reminder: work on \"{title}\" is scheduled for {work_date}.\n"
        "Supplier portal: {portal_link}\n"
    ),
    FollowUpKind.COMPLETION_REMINDER.value: (
        "Dear {supplier_name},\n\n"
        "Please confirm whether the work on \"{title}\" is complete "
        "(expected {expected_completion}).\n"
        "Supplier portal: {portal_link}\n"
    ),
    "escalation": (
        "Request #{request_id} \"{title}\" has had no supplier response and was escalated "
        "to level {level}.\n\n"
        "Supplier: {supplier_name} <{supplier_email}>\n"
        "Priority: {priority_label}\n"
        "Deadline: {deadline}\n"
        "Hours overdue: {hours_overdue}\n\n"
        "Recommended action: contact the supplier directly or reassign the request.\n"
    ),
}


class _Defaults(dict):
    def __missing__(self, key):
        return "n/a"


class PlainTextRenderer:
    """Minimal text renderer; production swaps in the external HTML renderer."""

    def render(self, template: str, context: dict) -> RenderedMessage:
        if template not in _SUBJECTS:
            raise KeyError(f"No template for {template!r}")
        values = _Defaults({k: v for k, v in context.items() if v is not None})
        priority = context.get("priority")
        values["priority_label"] = _PRIORITY_LABELS.get(priority, str(priority or "n/a"))
        attempt = int(context.get("attempt_number") or 1)
        values["reminder_prefix"] = f"#{attempt} " if attempt > 1 else ""
        deadline = context.get("quotation_deadline")
        values["deadline_line"] = f"Deadline: {deadline}\n" if deadline else ""
        return RenderedMessage(
            subject=_SUBJECTS[template].format_map(values),
            body=_BODIES[template].format_map(values),
            context=dict(context),
        )
