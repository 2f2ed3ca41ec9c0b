from __future__ import annotations

from dataclasses import dataclass
import logging

import httpx
from pydantic import BaseModel

from app.core.context import CallContext
from app.core.errors import InvalidResponseError, PollTransportError, SubmitError
from app.jobs.adapters.base import JobAdapter
from app.jobs.models import JobKind, JobStatus, Processing, ReputationVerdict, Succeeded, VerificationJob
from app.services.http import error_text, parse_body, send

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScanRequest:
    url: str


class _OverallResult(BaseModel):
    classification: str | None = None
    score: int | float | None = None

    def verdict(self) -> ReputationVerdict | None:
        if self.classification is None or self.score is None:
            return None
        return ReputationVerdict(classification=self.classification, score=self.score)


class _EvaluateResponse(BaseModel):
    success: bool = False
    overall_result: _OverallResult | None = None
    request_id: str | None = None
    message: str | None = None


class _EvaluationResponse(BaseModel):
    overall_result: _OverallResult | None = None


class ReputationScanAdapter(JobAdapter[ScanRequest]):
    """URL reputation API: ``/evaluate`` answers immediately or hands back a request id."""

    kind = JobKind.REPUTATION_SCAN

    def __init__(
        self,
        *,
        hostname: str,
        api_key: str,
        source: str = "checkmate",
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.hostname = hostname.rstrip("/")
        self.source = source
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.headers = {
            "x-api-key": api_key,
            "accept": "application/json",
            "User-Agent": "CheckMate",
        }

    async def submit(self, request: ScanRequest, context: CallContext) -> VerificationJob:
        logger.info("calling url reputation api %s", context)
        try:
            response = await send(
                self.client,
                "POST",
                f"{self.hostname}/evaluate",
                timeout_seconds=self.timeout_seconds,
                json={"url": request.url, "source": self.source},
                headers=self.headers,
            )
        except httpx.HTTPError as exc:
            raise SubmitError(f"url reputation api unreachable: {exc}") from exc

        if response.is_error:
            raise SubmitError(f"URL Scanning API returned {response.status_code}: {error_text(response)}")
        try:
            data = parse_body(response, _EvaluateResponse)
        except InvalidResponseError as exc:
            raise SubmitError(str(exc)) from exc

        verdict = data.overall_result.verdict() if data.success and data.overall_result else None
        if verdict is not None:
            logger.info("immediate reputation result classification=%s %s", verdict.classification, context)
            return VerificationJob(
                job_id=data.request_id or "immediate",
                kind=self.kind,
                initial_status=Succeeded(verdict),
            )
        if not data.request_id:
            raise SubmitError(data.message or "Request ID missing")
        return VerificationJob(job_id=data.request_id, kind=self.kind)

    async def poll(self, job: VerificationJob, context: CallContext) -> JobStatus:
        try:
            response = await send(
                self.client,
                "GET",
                f"{self.hostname}/url/{job.job_id}/evaluation",
                timeout_seconds=self.timeout_seconds,
                headers=self.headers,
            )
        except httpx.HTTPError as exc:
            raise PollTransportError(f"evaluation poll failed: {exc}") from exc

        if response.is_error:
            raise PollTransportError(f"Evaluation polling error: {response.status_code}: {error_text(response)}")

        data = parse_body(response, _EvaluationResponse)
        verdict = data.overall_result.verdict() if data.overall_result else None
        if verdict is None:
            return Processing()
        return Succeeded(verdict)
