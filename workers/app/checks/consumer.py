from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
from typing import Any

from opentelemetry import trace
from pydantic import ValidationError

from app.checks.models import ProcessOutcome, UpdateEvent
from app.checks.notifier import StateDeltaNotifier
from app.core.context import CallContext

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True, slots=True)
class QueueMessage:
    message_id: str
    body: Any
    attempts: int = 1


@dataclass(slots=True)
class BatchReport:
    outcomes: list[ProcessOutcome] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def handled_ids(self) -> list[str]:
        return [outcome.check_id for outcome in self.outcomes if outcome.success]


class QueueConsumer:
    """Feeds a batch of update messages through the notifier, one message at a time.

    A message that cannot be parsed or whose processing raises is logged and
    skipped; the rest of the batch still runs. Nothing is retried here.
    """

    def __init__(self, notifier: StateDeltaNotifier) -> None:
        self.notifier = notifier

    async def consume(self, messages: Sequence[QueueMessage], context: CallContext) -> BatchReport:
        report = BatchReport()
        with tracer.start_as_current_span("checks.consume_batch") as span:
            span.set_attribute("queue.batch_size", len(messages))
            logger.info("consuming batch size=%s %s", len(messages), context)
            for message in messages:
                message_context = context.bind(message_id=message.message_id, delivery=message.attempts)
                try:
                    event = UpdateEvent.model_validate(message.body)
                except ValidationError as exc:
                    logger.error("rejecting malformed update message errors=%s %s", exc.error_count(), message_context)
                    report.rejected.append(message.message_id)
                    continue

                try:
                    outcome = await self.notifier.process(event, message_context)
                except Exception:
                    logger.exception("update message processing failed %s", message_context)
                    report.failed.append(message.message_id)
                    continue

                report.outcomes.append(outcome)
                if not outcome.success:
                    report.failed.append(message.message_id)

            logger.info(
                "batch consumed handled=%s rejected=%s failed=%s %s",
                len(report.handled_ids),
                len(report.rejected),
                len(report.failed),
                context,
            )
        return report
