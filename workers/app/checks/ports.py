from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from app.checks.models import CheckEvent, FindResult, UpdateResult


@runtime_checkable
class CheckRepository(Protocol):
    """Record store. Must apply an update and report its delta as one atomic step."""

    async def update_check_with_changes(self, check_id: str, fields: dict[str, Any]) -> UpdateResult: ...

    async def find_check_by_id(self, check_id: str) -> FindResult: ...


@runtime_checkable
class NotificationSender(Protocol):
    async def send_newly_assessed_notification(
        self,
        *,
        check_id: str,
        crowdsourced_category: str | None,
        reply_to_message_id: int,
    ) -> None: ...

    async def send_community_note_downvote_notification(
        self,
        *,
        check_id: str,
        reply_to_message_id: int,
    ) -> None: ...

    async def send_category_change_notification(
        self,
        *,
        check_id: str,
        previous_category: str | None,
        current_category: str | None,
        reply_to_message_id: int,
    ) -> None: ...


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, event: CheckEvent) -> None: ...
