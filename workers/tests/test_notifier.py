from __future__ import annotations

import asyncio
from typing import Any

from app.checks.memory import InMemoryCheckRepository
from app.checks.models import CheckEvent, CheckRecord, UpdateEvent
from app.checks.notifier import StateDeltaNotifier
from app.core.context import CallContext
from app.core.errors import EventPublishError, NotificationDispatchError, RepositoryError

CONTEXT = CallContext(service="test")


class RecordingNotifications:
    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.fail_for = fail_for or set()

    async def _record(self, name: str, **params: Any) -> None:
        if params["check_id"] in self.fail_for:
            raise NotificationDispatchError("notification service unreachable")
        self.sent.append((name, params))

    async def send_newly_assessed_notification(self, **params: Any) -> None:
        await self._record("newly_assessed", **params)

    async def send_community_note_downvote_notification(self, **params: Any) -> None:
        await self._record("community_note_downvote", **params)

    async def send_category_change_notification(self, **params: Any) -> None:
        await self._record("category_change", **params)


class RecordingEvents:
    def __init__(self, fail: bool = False) -> None:
        self.published: list[CheckEvent] = []
        self.fail = fail

    async def publish(self, event: CheckEvent) -> None:
        if self.fail:
            raise EventPublishError("stream down")
        self.published.append(event)


def _record(**overrides: Any) -> CheckRecord:
    values = {"id": "check-1", "notificationId": 101, "communityNoteNotificationId": 202}
    values.update(overrides)
    return CheckRecord.model_validate(values)


def _process(notifier: StateDeltaNotifier, body: dict[str, Any]):
    return asyncio.run(notifier.process(UpdateEvent.model_validate(body), CONTEXT))


def test_newly_assessed_sends_one_threaded_notification_and_no_category_change() -> None:
    repository = InMemoryCheckRepository([_record()])
    notifications = RecordingNotifications()
    events = RecordingEvents()
    notifier = StateDeltaNotifier(repository, notifications, events)

    outcome = _process(notifier, {"id": "check-1", "isHumanAssessed": True, "crowdsourcedCategory": "scam"})

    assert outcome.success
    assert outcome.changes is not None and outcome.changes.crowdsourced_category_changed
    assert notifications.sent == [
        ("newly_assessed", {"check_id": "check-1", "crowdsourced_category": "scam", "reply_to_message_id": 101})
    ]
    assert [event.type.value for event in events.published] == ["assessed"]


def test_redelivered_event_dispatches_nothing() -> None:
    repository = InMemoryCheckRepository([_record()])
    notifications = RecordingNotifications()
    events = RecordingEvents()
    notifier = StateDeltaNotifier(repository, notifications, events)
    body = {"id": "check-1", "isHumanAssessed": True, "isCommunityNoteDownvoted": True}

    _process(notifier, body)
    second = _process(notifier, body)

    assert second.success
    assert second.changes is not None and second.changes.is_empty
    assert second.dispatched == []
    assert len(notifications.sent) == 2
    assert len(events.published) == 2


def test_category_change_on_assessed_record_notifies_with_both_categories() -> None:
    repository = InMemoryCheckRepository([_record(isHumanAssessed=True, crowdsourcedCategory="scam")])
    notifications = RecordingNotifications()
    notifier = StateDeltaNotifier(repository, notifications, RecordingEvents())

    _process(notifier, {"id": "check-1", "crowdsourcedCategory": "legitimate"})

    assert notifications.sent == [
        (
            "category_change",
            {
                "check_id": "check-1",
                "previous_category": "scam",
                "current_category": "legitimate",
                "reply_to_message_id": 101,
            },
        )
    ]


def test_category_change_on_unassessed_record_is_silent() -> None:
    repository = InMemoryCheckRepository([_record()])
    notifications = RecordingNotifications()
    notifier = StateDeltaNotifier(repository, notifications, RecordingEvents())

    outcome = _process(notifier, {"id": "check-1", "crowdsourcedCategory": "scam"})

    assert outcome.changes is not None and outcome.changes.crowdsourced_category_changed
    assert notifications.sent == []


def test_downvote_emits_event_and_threads_to_community_note() -> None:
    repository = InMemoryCheckRepository([_record()])
    notifications = RecordingNotifications()
    events = RecordingEvents()
    notifier = StateDeltaNotifier(repository, notifications, events)

    _process(notifier, {"id": "check-1", "isCommunityNoteDownvoted": True})

    assert events.published == [CheckEvent(check_id="check-1", type="downvoted")]
    assert notifications.sent == [
        ("community_note_downvote", {"check_id": "check-1", "reply_to_message_id": 202})
    ]


def test_downvote_and_category_change_in_same_cycle_both_notify() -> None:
    # Only a bundled "assessed" notification suppresses the category change; a bundled downvote does not.
    repository = InMemoryCheckRepository([_record(isHumanAssessed=True, crowdsourcedCategory="scam")])
    notifications = RecordingNotifications()
    notifier = StateDeltaNotifier(repository, notifications, RecordingEvents())

    _process(notifier, {"id": "check-1", "isCommunityNoteDownvoted": True, "crowdsourcedCategory": "satire"})

    assert [name for name, _ in notifications.sent] == ["community_note_downvote", "category_change"]


def test_missing_notification_ids_still_emit_domain_events() -> None:
    repository = InMemoryCheckRepository(
        [CheckRecord(id="check-1")]
    )
    notifications = RecordingNotifications()
    events = RecordingEvents()
    notifier = StateDeltaNotifier(repository, notifications, events)

    outcome = _process(notifier, {"id": "check-1", "isHumanAssessed": True, "isCommunityNoteDownvoted": True})

    assert notifications.sent == []
    assert outcome.dispatched == ["event.assessed", "event.downvoted"]


def test_notification_failure_is_logged_and_other_dispatches_continue() -> None:
    repository = InMemoryCheckRepository([_record()])
    notifications = RecordingNotifications(fail_for={"check-1"})
    events = RecordingEvents()
    notifier = StateDeltaNotifier(repository, notifications, events)

    outcome = _process(notifier, {"id": "check-1", "isHumanAssessed": True, "isCommunityNoteDownvoted": True})

    assert outcome.success
    assert outcome.dispatched == ["event.assessed", "event.downvoted"]
    assert len(outcome.errors) == 2
    assert repository.get("check-1").is_human_assessed is True


def test_event_publish_failure_does_not_block_notification() -> None:
    repository = InMemoryCheckRepository([_record()])
    notifications = RecordingNotifications()
    notifier = StateDeltaNotifier(repository, notifications, RecordingEvents(fail=True))

    outcome = _process(notifier, {"id": "check-1", "isHumanAssessed": True})

    assert outcome.dispatched == ["notification.newly_assessed"]
    assert outcome.errors == ["event.assessed: stream down"]


def test_unknown_check_is_a_failed_update() -> None:
    notifier = StateDeltaNotifier(InMemoryCheckRepository(), RecordingNotifications(), RecordingEvents())

    outcome = _process(notifier, {"id": "missing", "isHumanAssessed": True})

    assert not outcome.success
    assert outcome.errors == ["update: check not found"]


def test_repository_error_is_a_failed_update() -> None:
    class BrokenRepository(InMemoryCheckRepository):
        async def update_check_with_changes(self, check_id, fields):
            raise RepositoryError("database service unreachable")

    notifications = RecordingNotifications()
    notifier = StateDeltaNotifier(BrokenRepository(), notifications, RecordingEvents())

    outcome = _process(notifier, {"id": "check-1", "isHumanAssessed": True})

    assert not outcome.success
    assert notifications.sent == []
