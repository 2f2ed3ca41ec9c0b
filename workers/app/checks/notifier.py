from __future__ import annotations

from collections.abc import Awaitable
import logging

from opentelemetry import trace

from app.checks.models import CheckEvent, CheckEventType, CheckRecord, ProcessOutcome, StateDelta, UpdateEvent
from app.checks.ports import CheckRepository, EventPublisher, NotificationSender
from app.core.context import CallContext
from app.core.errors import EventPublishError, NotificationDispatchError, RepositoryError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class StateDeltaNotifier:
    """Applies one update event and fires the notifications its state transitions call for.

    Every rule keys off the delta reported by the repository. A redelivered event
    produces an empty delta and therefore dispatches nothing.
    """

    def __init__(
        self,
        repository: CheckRepository,
        notifications: NotificationSender,
        events: EventPublisher,
    ) -> None:
        self.repository = repository
        self.notifications = notifications
        self.events = events

    async def process(self, event: UpdateEvent, context: CallContext) -> ProcessOutcome:
        context = context.bind(check_id=event.check_id)
        outcome = ProcessOutcome(check_id=event.check_id, success=False)
        with tracer.start_as_current_span("checks.process_event") as span:
            span.set_attribute("check.id", event.check_id)
            try:
                update = await self.repository.update_check_with_changes(event.check_id, event.to_fields())
            except RepositoryError as exc:
                logger.error("check update failed error=%s %s", exc, context)
                outcome.errors.append(f"update: {exc}")
                return outcome
            if not update.success:
                logger.error("check update rejected error=%s %s", update.error, context)
                outcome.errors.append(f"update: {update.error or 'unknown error'}")
                return outcome

            outcome.success = True
            outcome.changes = delta = update.changes or StateDelta()
            if delta.is_empty:
                logger.info("no watched field changed %s", context)
                return outcome

            record = await self._load_record(event.check_id, context, outcome)
            await self._dispatch(delta, record, event.check_id, context, outcome)
            span.set_attribute("check.dispatched", len(outcome.dispatched))
            return outcome

    async def _load_record(self, check_id: str, context: CallContext, outcome: ProcessOutcome) -> CheckRecord | None:
        try:
            found = await self.repository.find_check_by_id(check_id)
        except RepositoryError as exc:
            logger.error("check lookup failed error=%s %s", exc, context)
            outcome.errors.append(f"lookup: {exc}")
            return None
        if not found.success or found.data is None:
            logger.error("check lookup returned nothing error=%s %s", found.error, context)
            outcome.errors.append(f"lookup: {found.error or 'not found'}")
            return None
        return found.data

    async def _dispatch(
        self,
        delta: StateDelta,
        record: CheckRecord | None,
        check_id: str,
        context: CallContext,
        outcome: ProcessOutcome,
    ) -> None:
        notification_id = record.notification_id if record else None
        community_note_notification_id = record.community_note_notification_id if record else None

        if delta.became_human_assessed:
            await self._publish(CheckEvent(check_id=check_id, type=CheckEventType.ASSESSED), context, outcome)
            if notification_id:
                await self._send(
                    "newly_assessed",
                    self.notifications.send_newly_assessed_notification(
                        check_id=check_id,
                        crowdsourced_category=record.crowdsourced_category if record else None,
                        reply_to_message_id=notification_id,
                    ),
                    context,
                    outcome,
                )

        if delta.became_downvoted:
            await self._publish(CheckEvent(check_id=check_id, type=CheckEventType.DOWNVOTED), context, outcome)
            if community_note_notification_id:
                await self._send(
                    "community_note_downvote",
                    self.notifications.send_community_note_downvote_notification(
                        check_id=check_id,
                        reply_to_message_id=community_note_notification_id,
                    ),
                    context,
                    outcome,
                )

        # The assessed notification already carries the category; a change in the same cycle is not repeated.
        if (
            delta.crowdsourced_category_changed
            and not delta.became_human_assessed
            and record is not None
            and record.is_human_assessed
            and notification_id
        ):
            await self._send(
                "category_change",
                self.notifications.send_category_change_notification(
                    check_id=check_id,
                    previous_category=delta.previous_category,
                    current_category=delta.current_category,
                    reply_to_message_id=notification_id,
                ),
                context,
                outcome,
            )

    async def _publish(self, event: CheckEvent, context: CallContext, outcome: ProcessOutcome) -> None:
        try:
            await self.events.publish(event)
        except EventPublishError as exc:
            logger.error("failed to publish check event type=%s error=%s %s", event.type.value, exc, context)
            outcome.errors.append(f"event.{event.type.value}: {exc}")
            return
        outcome.dispatched.append(f"event.{event.type.value}")

    async def _send(
        self,
        name: str,
        sending: Awaitable[None],
        context: CallContext,
        outcome: ProcessOutcome,
    ) -> None:
        try:
            await sending
        except NotificationDispatchError as exc:
            logger.error("failed to send %s notification error=%s %s", name, exc, context)
            outcome.errors.append(f"notification.{name}: {exc}")
            return
        outcome.dispatched.append(f"notification.{name}")
