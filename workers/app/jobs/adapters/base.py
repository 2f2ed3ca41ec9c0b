from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from app.core.context import CallContext
from app.jobs.models import JobKind, JobStatus, VerificationJob

RequestT = TypeVar("RequestT")
FollowUp = Callable[[], Awaitable[Any]]


class JobAdapter(ABC, Generic[RequestT]):
    """Submit/poll capability for one external job type.

    ``poll`` performs exactly one round trip: it never sleeps and never retries.
    Timing belongs to the poller.
    """

    kind: JobKind

    @abstractmethod
    async def submit(self, request: RequestT, context: CallContext) -> VerificationJob:
        """Raise ``SubmitError`` when the remote system rejects the job."""

    @abstractmethod
    async def poll(self, job: VerificationJob, context: CallContext) -> JobStatus:
        """Raise ``PollTransportError`` when the round trip or its body is unusable."""

    def follow_up(self, job: VerificationJob, payload: BaseModel, context: CallContext) -> FollowUp | None:
        """Deferred side effect to run after a success has been returned; none by default."""
        return None
