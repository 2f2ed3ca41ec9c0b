from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from app.checks.models import CheckRecord, FindResult, StateDelta, UpdateResult
from app.core.errors import InvalidResponseError, RepositoryError
from app.services.http import error_text, parse_body, send

# Record field -> document path understood by the database service.
FIELD_PATHS = {
    "is_human_assessed": "isHumanAssessed",
    "community_note_downvoted": "shortformResponse.downvoted",
    "crowdsourced_category": "crowdsourcedCategory",
}


class _Changes(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    became_human_assessed: bool = Field(default=False, alias="becameHumanAssessed")
    became_downvoted: bool = Field(default=False, alias="becameDownvoted")
    crowdsourced_category_changed: bool = Field(default=False, alias="crowdsourcedCategoryChanged")
    previous_category: str | None = Field(default=None, alias="previousCrowdsourcedCategory")
    current_category: str | None = Field(default=None, alias="currentCrowdsourcedCategory")


class _UpdateResponse(BaseModel):
    success: bool = False
    changes: _Changes | None = None
    error: str | None = None


class _FindResponse(BaseModel):
    success: bool = False
    data: CheckRecord | None = None
    error: str | None = None


class CheckRepositoryClient:
    """Database service client. The service applies an update and reports its delta atomically."""

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

    async def update_check_with_changes(self, check_id: str, fields: dict[str, Any]) -> UpdateResult:
        unknown = set(fields) - set(FIELD_PATHS)
        if unknown:
            raise RepositoryError(f"fields not updatable: {sorted(unknown)}")
        payload = {FIELD_PATHS[name]: value for name, value in fields.items()}
        response = await self._request("POST", f"/checks/{check_id}/changes", json=payload)
        if response.status_code == 404:
            return UpdateResult(success=False, error="check not found")
        if response.is_error:
            raise RepositoryError(f"database service returned {response.status_code}: {error_text(response)}")

        data = self._parse(response, _UpdateResponse)
        if not data.success:
            return UpdateResult(success=False, error=data.error)
        changes = data.changes or _Changes()
        return UpdateResult(
            success=True,
            changes=StateDelta(
                became_human_assessed=changes.became_human_assessed,
                became_downvoted=changes.became_downvoted,
                crowdsourced_category_changed=changes.crowdsourced_category_changed,
                previous_category=changes.previous_category,
                current_category=changes.current_category,
            ),
        )

    async def find_check_by_id(self, check_id: str) -> FindResult:
        response = await self._request("GET", f"/checks/{check_id}")
        if response.status_code == 404:
            return FindResult(success=False, error="check not found")
        if response.is_error:
            raise RepositoryError(f"database service returned {response.status_code}: {error_text(response)}")

        data = self._parse(response, _FindResponse)
        return FindResult(success=data.success and data.data is not None, data=data.data, error=data.error)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await send(
                self.client,
                method,
                f"{self.base_url}{path}",
                timeout_seconds=self.timeout_seconds,
                headers=self.headers,
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise RepositoryError(f"database service unreachable: {exc}") from exc

    @staticmethod
    def _parse(response: httpx.Response, model: type[BaseModel]) -> Any:
        try:
            return parse_body(response, model)
        except InvalidResponseError as exc:
            raise RepositoryError(str(exc)) from exc
