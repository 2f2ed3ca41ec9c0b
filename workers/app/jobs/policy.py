from __future__ import annotations

from dataclasses import dataclass

from app.core.config import Settings
from app.jobs.models import JobKind


@dataclass(frozen=True, slots=True)
class PollPolicy:
    """Timing for one polling session.

    The first poll goes out immediately. Before attempt ``n > 1`` the poller waits
    ``initial_delay * multiplier ** (n - 2)`` seconds, capped at ``max_delay`` when set.
    A multiplier of 1 gives a fixed interval.
    """

    max_attempts: int
    initial_delay: float
    multiplier: float = 1.0
    max_delay: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must not be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")

    @classmethod
    def fixed(cls, *, interval: float, max_attempts: int) -> PollPolicy:
        return cls(max_attempts=max_attempts, initial_delay=interval)

    @classmethod
    def exponential(
        cls,
        *,
        initial: float,
        max_attempts: int,
        multiplier: float = 2.0,
        max_delay: float | None = None,
    ) -> PollPolicy:
        return cls(max_attempts=max_attempts, initial_delay=initial, multiplier=multiplier, max_delay=max_delay)

    def delay_before(self, attempt_number: int) -> float:
        if attempt_number <= 1:
            return 0.0
        delay = self.initial_delay * self.multiplier ** (attempt_number - 2)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def worst_case_wait(self) -> float:
        return sum(self.delay_before(attempt) for attempt in range(1, self.max_attempts + 1))


def policy_for(kind: JobKind, settings: Settings) -> PollPolicy:
    if kind is JobKind.REPUTATION_SCAN:
        return PollPolicy.fixed(
            interval=settings.reputation_poll_interval_seconds,
            max_attempts=settings.reputation_max_attempts,
        )
    if kind is JobKind.MALICIOUS_URL_SCAN:
        return PollPolicy.fixed(
            interval=settings.malicious_url_poll_interval_seconds,
            max_attempts=settings.malicious_url_max_attempts,
        )
    return PollPolicy.exponential(
        initial=settings.warehouse_initial_backoff_seconds,
        multiplier=settings.warehouse_backoff_multiplier,
        max_delay=settings.warehouse_max_backoff_seconds,
        max_attempts=settings.warehouse_max_attempts,
    )
