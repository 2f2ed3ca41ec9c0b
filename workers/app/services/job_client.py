from __future__ import annotations

from typing import Any

import httpx

from app.services.http import send


class JobClient:
    """Pulls verification jobs (``{"id", "kind", "inputs_json"}``) and reports their rendered results.

    HTTP errors propagate; the worker loop backs off on them.
    """

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

    async def get_jobs(self, limit: int = 5) -> list[dict[str, Any]]:
        jobs = await self._call("GET", "/verification-jobs", params={"limit": limit, "status": "queued"})
        return jobs if isinstance(jobs, list) else []

    async def claim_job(self, job_id: str, lease_seconds: int = 120) -> dict[str, Any]:
        return await self._call("POST", f"/verification-jobs/{job_id}/claim", json={"lease_seconds": lease_seconds})

    async def submit_result(self, job_id: str, response_json: dict[str, Any]) -> dict[str, Any]:
        status = "done" if response_json.get("success") else "failed"
        return await self._call(
            "POST",
            f"/verification-jobs/{job_id}/result",
            json={"status": status, "result_json": response_json},
        )

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await send(
            self.client,
            method,
            f"{self.base_url}{path}",
            timeout_seconds=self.timeout_seconds,
            headers=self.headers,
            **kwargs,
        )
        response.raise_for_status()
        return response.json()
