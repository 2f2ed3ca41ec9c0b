from __future__ import annotations

from typing import Any

import httpx

from app.checks.consumer import QueueMessage
from app.core.errors import QueueTransportError
from app.services.http import error_text, send


class QueueClient:
    def __init__(
        self,
        base_url: str,
        queue_name: str,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.queue_name = queue_name
        self.headers = {"X-API-Key": api_key}
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def pull(self, limit: int = 10) -> list[QueueMessage]:
        payload = await self._post("pull", {"batch_size": limit})
        messages: list[QueueMessage] = []
        for raw in payload.get("messages") or []:
            if not isinstance(raw, dict) or "id" not in raw:
                continue
            messages.append(
                QueueMessage(
                    message_id=str(raw["id"]),
                    body=raw.get("body"),
                    attempts=int(raw.get("attempts") or 1),
                )
            )
        return messages

    async def ack(self, message_ids: list[str]) -> int:
        if not message_ids:
            return 0
        payload = await self._post("ack", {"acks": [{"lease_id": message_id} for message_id in message_ids]})
        return int(payload.get("ackCount", len(message_ids)))

    async def _post(self, action: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await send(
                self.client,
                "POST",
                f"{self.base_url}/queues/{self.queue_name}/messages/{action}",
                timeout_seconds=self.timeout_seconds,
                json=body,
                headers=self.headers,
            )
        except httpx.HTTPError as exc:
            raise QueueTransportError(f"queue service unreachable: {exc}") from exc
        if response.is_error:
            raise QueueTransportError(f"queue {action} returned {response.status_code}: {error_text(response)}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise QueueTransportError(f"queue {action} returned a non-JSON body") from exc
        return payload if isinstance(payload, dict) else {}
