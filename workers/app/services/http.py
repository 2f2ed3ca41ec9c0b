from __future__ import annotations

from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from app.core.errors import InvalidResponseError

ModelT = TypeVar("ModelT", bound=BaseModel)


async def send(
    client: httpx.AsyncClient | None,
    method: str,
    url: str,
    *,
    timeout_seconds: float = 10.0,
    **kwargs: Any,
) -> httpx.Response:
    if client is not None:
        return await client.request(method, url, **kwargs)
    async with httpx.AsyncClient(timeout=timeout_seconds) as temp_client:
        return await temp_client.request(method, url, **kwargs)


def parse_body(response: httpx.Response, model: type[ModelT]) -> ModelT:
    try:
        return model.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise InvalidResponseError(
            f"unexpected response shape from {response.request.url}: {exc}"
        ) from exc


def error_text(response: httpx.Response, limit: int = 500) -> str:
    text = response.text.strip()
    return text[:limit] if text else response.reason_phrase
