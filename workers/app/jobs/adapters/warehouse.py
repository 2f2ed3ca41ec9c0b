from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from app.core.context import CallContext
from app.core.errors import InvalidResponseError, PollTransportError, SubmitError
from app.jobs.adapters.base import JobAdapter
from app.jobs.models import Failed, JobKind, JobStatus, Processing, Succeeded, VerificationJob, WarehouseRows
from app.services.http import error_text, parse_body, send

logger = logging.getLogger(__name__)

BIGQUERY_API_BASE = "https://bigquery.googleapis.com/bigquery/v2"


@dataclass(frozen=True, slots=True)
class WarehouseQueryRequest:
    query: str
    use_query_cache: bool = True


class _JobReference(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")
    job_id: str = Field(alias="jobId")
    location: str | None = None


class _ErrorProto(BaseModel):
    message: str = "query failed"
    reason: str | None = None


class _QueryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_complete: bool = Field(default=False, alias="jobComplete")
    job_reference: _JobReference | None = Field(default=None, alias="jobReference")
    rows: list[dict[str, Any]] = Field(default_factory=list)
    total_rows: int = Field(default=0, alias="totalRows")
    errors: list[_ErrorProto] = Field(default_factory=list)

    def status(self) -> JobStatus:
        if not self.job_complete:
            return Processing()
        if self.errors:
            return Failed("; ".join(error.message for error in self.errors))
        return Succeeded(WarehouseRows(rows=self.rows, total_rows=self.total_rows))


class WarehouseQueryAdapter(JobAdapter[WarehouseQueryRequest]):
    """Warehouse SQL job: ``queries`` may finish inline, otherwise ``getQueryResults`` is polled."""

    kind = JobKind.WAREHOUSE_QUERY

    def __init__(
        self,
        *,
        project_id: str,
        access_token: str | None,
        location: str = "asia-southeast1",
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.project_id = project_id
        self.location = location
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}

    async def submit(self, request: WarehouseQueryRequest, context: CallContext) -> VerificationJob:
        logger.info("submitting warehouse query project=%s %s", self.project_id, context)
        try:
            response = await send(
                self.client,
                "POST",
                f"{BIGQUERY_API_BASE}/projects/{self.project_id}/queries",
                timeout_seconds=self.timeout_seconds,
                json={
                    "query": request.query,
                    "location": self.location,
                    "useLegacySql": False,
                    "useQueryCache": request.use_query_cache,
                },
                headers=self.headers,
            )
        except httpx.HTTPError as exc:
            raise SubmitError(f"warehouse unreachable: {exc}") from exc

        if response.is_error:
            raise SubmitError(f"warehouse rejected query {response.status_code}: {error_text(response)}")
        try:
            data = parse_body(response, _QueryResponse)
        except InvalidResponseError as exc:
            raise SubmitError(str(exc)) from exc

        reference = data.job_reference
        if data.job_complete:
            status = data.status()
            return VerificationJob(
                job_id=reference.job_id if reference else "inline",
                kind=self.kind,
                initial_status=status if isinstance(status, (Succeeded, Failed)) else None,
            )
        if reference is None:
            raise SubmitError("warehouse job incomplete without a job reference")

        logger.info("warehouse job not complete, polling job_id=%s %s", reference.job_id, context)
        return VerificationJob(
            job_id=reference.job_id,
            kind=self.kind,
            extras={
                "project_id": reference.project_id,
                "location": reference.location or self.location,
            },
        )

    async def poll(self, job: VerificationJob, context: CallContext) -> JobStatus:
        project_id = job.extras.get("project_id", self.project_id)
        try:
            response = await send(
                self.client,
                "GET",
                f"{BIGQUERY_API_BASE}/projects/{project_id}/jobs/{job.job_id}/getQueryResults",
                timeout_seconds=self.timeout_seconds,
                params={"location": job.extras.get("location", self.location)},
                headers=self.headers,
            )
        except httpx.HTTPError as exc:
            raise PollTransportError(f"getQueryResults failed: {exc}") from exc

        if response.is_error:
            raise PollTransportError(f"getQueryResults returned {response.status_code}: {error_text(response)}")

        status = parse_body(response, _QueryResponse).status()
        logger.info(
            "warehouse poll response job_id=%s state=%s %s",
            job.job_id,
            "complete" if not isinstance(status, Processing) else "running",
            context,
        )
        return status
