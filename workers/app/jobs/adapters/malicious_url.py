from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.context import CallContext
from app.core.errors import InvalidResponseError, PollTransportError, SubmitError
from app.jobs.adapters.base import FollowUp, JobAdapter
from app.jobs.adapters.reputation import ScanRequest
from app.jobs.models import (
    Failed,
    JobKind,
    JobStatus,
    MaliciousUrlVerdict,
    Processing,
    Succeeded,
    VerificationJob,
)
from app.services.http import error_text, parse_body, send
from app.services.screenshots import ScreenshotArchiver

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
PUBLIC_SCAN_PAGE = "https://radar.cloudflare.com/scan/{uuid}"


class _SubmitResponse(BaseModel):
    uuid: str | None = None
    result: str | None = None


class _Task(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool | None = None
    screenshot_url: str | None = Field(default=None, alias="screenshotURL")


class _OverallVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    malicious: bool = False
    categories: list[Any] = Field(default_factory=list)
    tags: list[Any] = Field(default_factory=list)
    has_verdicts: bool = Field(default=False, alias="hasVerdicts")

    @field_validator("malicious", "has_verdicts", mode="before")
    @classmethod
    def _null_flag(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("categories", "tags", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


class _Verdicts(BaseModel):
    overall: _OverallVerdict | None = None


class _ResultResponse(BaseModel):
    task: _Task | None = None
    verdicts: _Verdicts | None = None


class MaliciousUrlScanAdapter(JobAdapter[ScanRequest]):
    """URL scanner with submit/result endpoints and a public results page for manual review.

    Uses the account-scoped scanner when an account id is configured, the public
    radar scanner otherwise.
    """

    kind = JobKind.MALICIOUS_URL_SCAN

    def __init__(
        self,
        *,
        api_token: str | None = None,
        account_id: str | None = None,
        archiver: ScreenshotArchiver | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.api_token = api_token
        self.archiver = archiver
        self.client = client
        self.timeout_seconds = timeout_seconds
        if account_id:
            self.base_url = f"{CLOUDFLARE_API_BASE}/accounts/{account_id}/urlscanner/v2"
        else:
            self.base_url = f"{CLOUDFLARE_API_BASE}/radar/url_scanner"

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"} if self.api_token else {}

    async def submit(self, request: ScanRequest, context: CallContext) -> VerificationJob:
        logger.info("submitting url to scanner base_url=%s %s", self.base_url, context)
        try:
            response = await send(
                self.client,
                "POST",
                f"{self.base_url}/scan",
                timeout_seconds=self.timeout_seconds,
                json={"url": request.url, "visibility": "unlisted"},
                headers=self.auth_headers,
            )
        except httpx.HTTPError as exc:
            raise SubmitError(f"url scanner unreachable: {exc}") from exc

        if response.is_error:
            raise SubmitError(f"Cloudflare Radar API returned {response.status_code}: {error_text(response)}")
        try:
            data = parse_body(response, _SubmitResponse)
        except InvalidResponseError as exc:
            raise SubmitError(str(exc)) from exc
        if not data.uuid:
            raise SubmitError("No scan UUID returned from Cloudflare Radar API")

        logger.info("url scan submitted scan_uuid=%s public_url=%s %s", data.uuid, data.result, context)
        return VerificationJob(
            job_id=data.uuid,
            kind=self.kind,
            result_url=data.result or PUBLIC_SCAN_PAGE.format(uuid=data.uuid),
            extras={"url": request.url},
        )

    async def poll(self, job: VerificationJob, context: CallContext) -> JobStatus:
        try:
            response = await send(
                self.client,
                "GET",
                f"{self.base_url}/result/{job.job_id}",
                timeout_seconds=self.timeout_seconds,
                headers=self.auth_headers,
            )
        except httpx.HTTPError as exc:
            raise PollTransportError(f"scan result poll failed: {exc}") from exc

        # The result endpoint answers 404 until the scan is stored; treated like any other failed round trip.
        if response.is_error:
            raise PollTransportError(f"scan result returned {response.status_code}: {error_text(response)}")

        data = parse_body(response, _ResultResponse)
        task = data.task
        if task is None or task.success is None:
            return Processing()
        if task.success is False:
            return Failed("URL scan failed")

        overall = data.verdicts.overall if data.verdicts and data.verdicts.overall else _OverallVerdict()
        verdict = MaliciousUrlVerdict(
            is_malicious=overall.malicious,
            categories=overall.categories,
            tags=overall.tags,
            has_verdicts=overall.has_verdicts,
            screenshot_url=task.screenshot_url,
        )
        logger.info(
            "scan completed is_malicious=%s has_verdicts=%s scan_url=%s %s",
            verdict.is_malicious,
            verdict.has_verdicts,
            job.result_url,
            context,
        )
        return Succeeded(verdict)

    def screenshot_url_for(self, job: VerificationJob, verdict: MaliciousUrlVerdict) -> str:
        if verdict.screenshot_url:
            return verdict.screenshot_url
        if "/accounts/" in self.base_url:
            return f"{self.base_url}/screenshots/{job.job_id}.png"
        return f"{self.base_url}/scan/{job.job_id}/screenshot"

    def follow_up(self, job: VerificationJob, payload: BaseModel, context: CallContext) -> FollowUp | None:
        if self.archiver is None or not isinstance(payload, MaliciousUrlVerdict):
            return None
        archiver = self.archiver
        screenshot_url = self.screenshot_url_for(job, payload)
        original_url = job.extras.get("url", "")

        async def archive() -> str | None:
            return await archiver.archive(
                original_url=original_url,
                scan_uuid=job.job_id,
                screenshot_url=screenshot_url,
                headers=self.auth_headers,
                context=context,
            )

        return archive
