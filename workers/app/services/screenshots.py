from __future__ import annotations

from datetime import datetime, timezone
import logging

import httpx

from app.core.context import CallContext
from app.core.urls import screenshot_key
from app.services.artifact_store import ArtifactStore
from app.services.http import send

logger = logging.getLogger(__name__)


class ScreenshotArchiver:
    """Copies a completed scan's screenshot into the artifact store.

    Returns the stored key, or ``None`` when the screenshot could not be downloaded.
    Transport and storage errors propagate to whoever scheduled the work.
    """

    def __init__(
        self,
        store: ArtifactStore,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.store = store
        self.client = client
        self.timeout_seconds = timeout_seconds

    async def archive(
        self,
        *,
        original_url: str,
        scan_uuid: str,
        screenshot_url: str,
        headers: dict[str, str] | None = None,
        context: CallContext,
    ) -> str | None:
        logger.info("downloading screenshot scan_uuid=%s screenshot_url=%s %s", scan_uuid, screenshot_url, context)
        response = await send(
            self.client,
            "GET",
            screenshot_url,
            timeout_seconds=self.timeout_seconds,
            headers=headers or {},
        )
        if response.is_error:
            logger.warning(
                "failed to download screenshot scan_uuid=%s status=%s %s",
                scan_uuid,
                response.status_code,
                context,
            )
            return None

        key = screenshot_key(original_url)
        await self.store.put(
            key,
            response.content,
            content_type=response.headers.get("content-type") or "image/png",
            metadata={
                "scanUuid": scan_uuid,
                "originalUrl": original_url,
                "uploadedAt": datetime.now(timezone.utc).isoformat(),
            },
        )
        logger.info("screenshot archived scan_uuid=%s key=%s %s", scan_uuid, key, context)
        return key
