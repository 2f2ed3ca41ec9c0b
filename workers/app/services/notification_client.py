from __future__ import annotations

from typing import Any

import httpx

from app.core.errors import NotificationDispatchError
from app.services.http import error_text, send


class NotificationClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"X-API-Key": api_key}
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def send_newly_assessed_notification(
        self,
        *,
        check_id: str,
        crowdsourced_category: str | None,
        reply_to_message_id: int,
    ) -> None:
        await self._post(
            "newly-assessed",
            {
                "id": check_id,
                "crowdsourcedCategory": crowdsourced_category,
                "replyToMessageId": reply_to_message_id,
            },
        )

    async def send_community_note_downvote_notification(
        self,
        *,
        check_id: str,
        reply_to_message_id: int,
    ) -> None:
        await self._post(
            "community-note-downvote",
            {"id": check_id, "replyToMessageId": reply_to_message_id},
        )

    async def send_category_change_notification(
        self,
        *,
        check_id: str,
        previous_category: str | None,
        current_category: str | None,
        reply_to_message_id: int,
    ) -> None:
        await self._post(
            "category-change",
            {
                "id": check_id,
                "previousCategory": previous_category,
                "currentCategory": current_category,
                "replyToMessageId": reply_to_message_id,
            },
        )

    async def _post(self, kind: str, payload: dict[str, Any]) -> None:
        try:
            response = await send(
                self.client,
                "POST",
                f"{self.base_url}/notifications/{kind}",
                timeout_seconds=self.timeout_seconds,
                json=payload,
                headers=self.headers,
            )
        except httpx.HTTPError as exc:
            raise NotificationDispatchError(f"notification service unreachable: {exc}") from exc
        if response.is_error:
            raise NotificationDispatchError(
                f"notification service returned {response.status_code}: {error_text(response)}"
            )
