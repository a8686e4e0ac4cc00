"""Retry/backoff for follow-up dispatch failures.

Pure functions: no I/O, no clock reads. The caller passes `now`, so the
same inputs always yield the same decision.

Backoff = base interval for the priority × multiplier^attempt_count,
capped at max_backoff. Higher priorities retry sooner; the interval never
shrinks as attempts grow, so a failing notifier is not hammered.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..models import Priority


@dataclass(frozen=True)
class RetryDecision:
    next_at: datetime | None
    is_terminal: bool


@dataclass(frozen=True)
class RetryPolicy:
    base_minutes: dict = field(
        default_factory=lambda: {
            Priority.CRITICAL: 30,
            Priority.URGENT: 60,
            Priority.NORMAL: 240,
        }
    )
    multiplier: float = 2.0
    max_backoff: timedelta = timedelta(hours=24)

    @classmethod
    def from_settings(cls, settings=None) -> "RetryPolicy":
        if settings is None:
            from ..config import settings
        return cls(
            base_minutes={
                Priority.CRITICAL: settings.retry_base_minutes_critical,
                Priority.URGENT: settings.retry_base_minutes_urgent,
                Priority.NORMAL: settings.retry_base_minutes_normal,
            },
            multiplier=max(1.0, settings.retry_multiplier),
            max_backoff=timedelta(hours=settings.retry_max_backoff_hours),
        )


def backoff(priority, attempt_count: int, policy: RetryPolicy | None = None) -> timedelta:
    """Delay before the next attempt after `attempt_count` earlier attempts."""
    policy = policy or RetryPolicy.from_settings()
    base = timedelta(minutes=policy.base_minutes[Priority(priority)])
    delay = base * (policy.multiplier ** max(0, attempt_count))
    return min(delay, policy.max_backoff)


def compute_next_attempt(schedule, now: datetime, policy: RetryPolicy | None = None) -> RetryDecision:
    """Decide what happens after a failed attempt on `schedule`.

    `schedule.attempt_count` is the number of attempts made before the one
    that just failed. Terminal when that failure uses up the last attempt.
    """
    attempts = schedule.attempt_count or 0
    if attempts + 1 >= schedule.max_attempts:
        return RetryDecision(next_at=None, is_terminal=True)
    return RetryDecision(
        next_at=now + backoff(schedule.priority, attempts, policy),
        is_terminal=False,
    )
