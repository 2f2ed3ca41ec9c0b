from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
import logging
from typing import Any

from opentelemetry import trace

from app.core.context import CallContext

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TaskState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BackgroundTask:
    """Handle for one deferred unit of work; observes its completion without raising into the caller."""

    def __init__(self, name: str, context: CallContext) -> None:
        self.name = name
        self.context = context
        self.state = TaskState.PENDING
        self.result: Any = None
        self.error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None

    def done(self) -> bool:
        return self.state is not TaskState.PENDING

    async def wait(self) -> TaskState:
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.state


class BackgroundTaskScheduler:
    """Runs best-effort side effects after a primary result has been handed back.

    Each scheduled callable is awaited exactly once. Failures are logged on the task
    handle and never retried. The hosting process must call :meth:`drain` (or
    :meth:`shutdown`) before it exits; work still pending at that point is what the
    caller explicitly chose to give up.
    """

    def __init__(self) -> None:
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._inflight)

    def schedule(self, name: str, work: Callable[[], Awaitable[Any]], context: CallContext) -> BackgroundTask:
        handle = BackgroundTask(name, context)
        task = asyncio.get_running_loop().create_task(self._run(handle, work), name=f"background:{name}")
        handle._task = task
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        logger.debug("background task scheduled name=%s %s", name, context)
        return handle

    async def drain(self, timeout: float | None = None) -> int:
        """Wait for in-flight tasks; return how many were still pending at the deadline."""
        if not self._inflight:
            return 0
        _, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        if pending:
            logger.warning("background drain timed out pending=%s timeout=%s", len(pending), timeout)
        return len(pending)

    async def shutdown(self, timeout: float | None = None) -> None:
        if await self.drain(timeout) == 0:
            return
        remaining = set(self._inflight)
        for task in remaining:
            task.cancel()
        await asyncio.gather(*remaining, return_exceptions=True)

    async def _run(self, handle: BackgroundTask, work: Callable[[], Awaitable[Any]]) -> None:
        with tracer.start_as_current_span("background.task") as span:
            span.set_attribute("background.name", handle.name)
            try:
                handle.result = await work()
            except asyncio.CancelledError:
                handle.state = TaskState.CANCELLED
                logger.warning("background task cancelled name=%s %s", handle.name, handle.context)
                raise
            except Exception as exc:
                handle.state = TaskState.FAILED
                handle.error = exc
                span.record_exception(exc)
                logger.exception("background task failed name=%s %s", handle.name, handle.context)
                return
            handle.state = TaskState.SUCCEEDED
            logger.info("background task finished name=%s %s", handle.name, handle.context)
