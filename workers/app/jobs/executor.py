from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx

from app.core.config import Settings
from app.core.context import CallContext
from app.core.urls import is_http_url
from app.jobs.adapters.base import JobAdapter
from app.jobs.adapters.malicious_url import MaliciousUrlScanAdapter
from app.jobs.adapters.reputation import ReputationScanAdapter, ScanRequest
from app.jobs.adapters.warehouse import WarehouseQueryAdapter, WarehouseQueryRequest
from app.jobs.background import BackgroundTaskScheduler
from app.jobs.models import Failure, JobKind, JobResult
from app.jobs.policy import PollPolicy, policy_for
from app.jobs.poller import JobPoller, Sleep
from app.services.artifact_store import LocalArtifactStore
from app.services.screenshots import ScreenshotArchiver


def build_adapters(settings: Settings, *, client: httpx.AsyncClient | None = None) -> dict[JobKind, JobAdapter[Any]]:
    archiver = ScreenshotArchiver(LocalArtifactStore(Path(settings.screenshot_archive_dir)), client=client)
    return {
        JobKind.REPUTATION_SCAN: ReputationScanAdapter(
            hostname=settings.urlscan_hostname,
            api_key=settings.urlscan_api_key,
            source=settings.urlscan_source,
            client=client,
            timeout_seconds=settings.http_timeout_seconds,
        ),
        JobKind.MALICIOUS_URL_SCAN: MaliciousUrlScanAdapter(
            api_token=settings.cloudflare_radar_api_token,
            account_id=settings.cloudflare_account_id,
            archiver=archiver,
            client=client,
            timeout_seconds=settings.http_timeout_seconds,
        ),
        JobKind.WAREHOUSE_QUERY: WarehouseQueryAdapter(
            project_id=settings.bigquery_project_id,
            access_token=settings.bigquery_access_token,
            location=settings.bigquery_location,
            client=client,
            timeout_seconds=settings.http_timeout_seconds,
        ),
    }


class VerificationService:
    """Entry point for every submit-then-poll job: one adapter and one policy per kind."""

    def __init__(
        self,
        adapters: Mapping[JobKind, JobAdapter[Any]],
        policies: Mapping[JobKind, PollPolicy],
        *,
        scheduler: BackgroundTaskScheduler | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.adapters = dict(adapters)
        self.policies = dict(policies)
        self.scheduler = scheduler
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        scheduler: BackgroundTaskScheduler | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> VerificationService:
        return cls(
            build_adapters(settings, client=client),
            {kind: policy_for(kind, settings) for kind in JobKind},
            scheduler=scheduler,
        )

    async def verify(self, kind: JobKind, request: Any, context: CallContext) -> JobResult:
        poller = JobPoller(self.policies[kind], scheduler=self.scheduler, sleep=self.sleep)
        return await poller.run(self.adapters[kind], request, context)


async def execute_job(
    job: dict[str, Any],
    service: VerificationService,
) -> dict[str, Any]:
    """Run a job description ``{"id", "kind", "inputs_json"}`` and render the service response."""
    request_id = _as_text(job.get("id"))
    context = CallContext(service="verification", request_id=request_id)
    raw_inputs = job.get("inputs_json")
    inputs: dict[str, Any] = raw_inputs if isinstance(raw_inputs, dict) else {}

    try:
        kind = JobKind(job.get("kind"))
    except ValueError:
        return Failure(f"unsupported job kind: {job.get('kind')!r}").to_response(request_id)

    request: ScanRequest | WarehouseQueryRequest
    if kind is JobKind.WAREHOUSE_QUERY:
        query = _as_text(inputs.get("query"))
        if not query:
            return Failure("Missing required 'query' field").to_response(request_id)
        request = WarehouseQueryRequest(query=query)
    else:
        url = _as_text(inputs.get("url"))
        if not url:
            return Failure("Missing required 'url' field").to_response(request_id)
        if not is_http_url(url):
            return Failure("Invalid URL format").to_response(request_id)
        request = ScanRequest(url=url)

    result = await service.verify(kind, request, context)
    return result.to_response(request_id)


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
