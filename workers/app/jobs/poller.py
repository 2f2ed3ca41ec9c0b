from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
import logging
from typing import TypeVar

from opentelemetry import trace

from app.core.context import CallContext
from app.core.errors import PollTransportError, SubmitError
from app.jobs.adapters.base import JobAdapter
from app.jobs.background import BackgroundTaskScheduler
from app.jobs.models import (
    Failed,
    Failure,
    JobResult,
    PollAttempt,
    PollOutcome,
    Succeeded,
    Success,
    TimedOut,
    VerificationJob,
)
from app.jobs.policy import PollPolicy

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RequestT = TypeVar("RequestT")
Sleep = Callable[[float], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobPoller:
    """Drives an adapter from submit to a terminal result under one poll policy.

    Submission errors end the session at once. Poll transport errors count as an
    attempt. Running out of attempts yields ``TimedOut`` with the job's public
    reference, never an exception.
    """

    def __init__(
        self,
        policy: PollPolicy,
        *,
        scheduler: BackgroundTaskScheduler | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.policy = policy
        self.scheduler = scheduler
        self.sleep = sleep
        self.clock = clock

    async def run(
        self,
        adapter: JobAdapter[RequestT],
        request: RequestT,
        context: CallContext,
    ) -> JobResult:
        context = context.bind(kind=adapter.kind.value)
        with tracer.start_as_current_span("verification.run") as span:
            span.set_attribute("verification.kind", adapter.kind.value)
            try:
                job = await adapter.submit(request, context)
            except SubmitError as exc:
                logger.error("job submission rejected error=%s %s", exc, context)
                span.set_attribute("verification.outcome", "failure")
                return Failure(str(exc))

            context = context.bind(job_id=job.job_id)
            span.set_attribute("verification.job_id", job.job_id)
            if job.initial_status is not None:
                return self._finish(adapter, job, job.initial_status, (), context)

            result = await self._poll_until_terminal(adapter, job, context)
            span.set_attribute("verification.attempts", len(result.attempts))
            return result

    async def _poll_until_terminal(
        self,
        adapter: JobAdapter[RequestT],
        job: VerificationJob,
        context: CallContext,
    ) -> JobResult:
        attempts: list[PollAttempt] = []
        for attempt_number in range(1, self.policy.max_attempts + 1):
            delay = self.policy.delay_before(attempt_number)
            if delay > 0:
                await self.sleep(delay)

            logger.info(
                "polling job attempt=%s/%s %s",
                attempt_number,
                self.policy.max_attempts,
                context,
            )
            with tracer.start_as_current_span("verification.poll") as span:
                span.set_attribute("verification.attempt", attempt_number)
                try:
                    status = await adapter.poll(job, context)
                except PollTransportError as exc:
                    attempts.append(PollAttempt(attempt_number, self.clock(), PollOutcome.TRANSIENT_ERROR))
                    logger.warning("poll attempt failed, will retry attempt=%s error=%s %s", attempt_number, exc, context)
                    continue

            if isinstance(status, (Succeeded, Failed)):
                attempts.append(PollAttempt(attempt_number, self.clock(), PollOutcome.TERMINAL))
                return self._finish(adapter, job, status, tuple(attempts), context)
            attempts.append(PollAttempt(attempt_number, self.clock(), PollOutcome.PENDING))

        logger.warning(
            "job did not complete within %s attempts reference=%s %s",
            self.policy.max_attempts,
            job.result_url,
            context,
        )
        return TimedOut(last_known_reference=job.result_url, job=job, attempts=tuple(attempts))

    def _finish(
        self,
        adapter: JobAdapter[RequestT],
        job: VerificationJob,
        status: Succeeded | Failed,
        attempts: tuple[PollAttempt, ...],
        context: CallContext,
    ) -> JobResult:
        if isinstance(status, Failed):
            logger.error("job failed reason=%s %s", status.reason, context)
            return Failure(status.reason, job=job, attempts=attempts)

        logger.info("job succeeded attempts=%s %s", len(attempts), context)
        if self.scheduler is not None:
            work = adapter.follow_up(job, status.payload, context)
            if work is not None:
                self.scheduler.schedule(f"{adapter.kind.value}.follow_up", work, context)
        return Success(status.payload, job=job, attempts=attempts)
