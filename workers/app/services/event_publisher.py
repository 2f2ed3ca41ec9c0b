from __future__ import annotations

import httpx

from app.checks.models import CheckEvent
from app.core.errors import EventPublishError
from app.services.http import error_text, send


class EventPublisherClient:
    """Publishes check lifecycle events to the downstream event stream."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        stream: str = "core-check-events",
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.stream = stream
        self.headers = {"X-API-Key": api_key}
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def publish(self, event: CheckEvent) -> None:
        try:
            response = await send(
                self.client,
                "POST",
                f"{self.base_url}/streams/{self.stream}/events",
                timeout_seconds=self.timeout_seconds,
                json=event.model_dump(mode="json", by_alias=True),
                headers=self.headers,
            )
        except httpx.HTTPError as exc:
            raise EventPublishError(f"event stream unreachable: {exc}") from exc
        if response.is_error:
            raise EventPublishError(f"event stream returned {response.status_code}: {error_text(response)}")
