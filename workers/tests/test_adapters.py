from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from app.core.context import CallContext
from app.core.errors import InvalidResponseError, PollTransportError, SubmitError
from app.jobs.adapters.malicious_url import MaliciousUrlScanAdapter
from app.jobs.adapters.reputation import ReputationScanAdapter, ScanRequest
from app.jobs.adapters.warehouse import WarehouseQueryAdapter, WarehouseQueryRequest
from app.jobs.models import (
    Failed,
    MaliciousUrlVerdict,
    Processing,
    ReputationVerdict,
    Succeeded,
    Success,
    TimedOut,
    VerificationJob,
    WarehouseRows,
)
from app.jobs.policy import PollPolicy
from app.jobs.poller import JobPoller

CONTEXT = CallContext(service="test")


def _run_with(handler, call):
    async def run() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await call(client)

    return asyncio.run(run())


def test_reputation_submit_returns_immediate_result() -> None:
    captured: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        captured["api_key"] = request.headers["x-api-key"]
        return httpx.Response(
            200,
            json={"success": True, "overall_result": {"classification": "benign", "score": 2}},
        )

    job = _run_with(
        handler,
        lambda client: ReputationScanAdapter(hostname="https://scan.example/", api_key="secret", client=client).submit(
            ScanRequest(url="https://example.org"), CONTEXT
        ),
    )

    assert captured["body"] == {"url": "https://example.org", "source": "checkmate"}
    assert captured["api_key"] == "secret"
    assert job.initial_status == Succeeded(ReputationVerdict(classification="benign", score=2))


def test_reputation_submit_without_result_or_request_id_is_rejected() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "message": "quota exceeded"})

    with pytest.raises(SubmitError, match="quota exceeded"):
        _run_with(
            handler,
            lambda client: ReputationScanAdapter(hostname="https://scan.example", api_key="k", client=client).submit(
                ScanRequest(url="https://example.org"), CONTEXT
            ),
        )


def test_reputation_submit_http_error_is_rejected() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="bad url")

    with pytest.raises(SubmitError, match="400: bad url"):
        _run_with(
            handler,
            lambda client: ReputationScanAdapter(hostname="https://scan.example", api_key="k", client=client).submit(
                ScanRequest(url="not a url"), CONTEXT
            ),
        )


def test_reputation_poll_pending_then_invalid_shape() -> None:
    responses = iter(
        [
            httpx.Response(200, json={"overall_result": {"classification": "malicious"}}),
            httpx.Response(200, json={"overall_result": "not-an-object"}),
        ]
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    async def call(client: httpx.AsyncClient) -> list[Any]:
        adapter = ReputationScanAdapter(hostname="https://scan.example", api_key="k", client=client)
        job = VerificationJob(job_id="r-1", kind=adapter.kind)
        outcomes: list[Any] = [await adapter.poll(job, CONTEXT)]
        try:
            await adapter.poll(job, CONTEXT)
        except InvalidResponseError as exc:
            outcomes.append(exc)
        return outcomes

    pending, invalid = _run_with(handler, call)
    assert pending == Processing()
    assert isinstance(invalid, PollTransportError)


def test_malicious_url_uses_account_endpoint_and_manual_review_fallback() -> None:
    seen: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        assert request.headers["authorization"] == "Bearer radar-token"
        assert json.loads(request.content) == {"url": "https://example.org", "visibility": "unlisted"}
        return httpx.Response(200, json={"uuid": "scan-1"})

    job = _run_with(
        handler,
        lambda client: MaliciousUrlScanAdapter(api_token="radar-token", account_id="acc-9", client=client).submit(
            ScanRequest(url="https://example.org"), CONTEXT
        ),
    )

    assert seen == ["https://api.cloudflare.com/client/v4/accounts/acc-9/urlscanner/v2/scan"]
    assert job.job_id == "scan-1"
    assert job.result_url == "https://radar.cloudflare.com/scan/scan-1"
    assert job.extras["url"] == "https://example.org"


def test_malicious_url_submit_without_uuid_is_rejected() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": "https://radar.example/scan/x"})

    with pytest.raises(SubmitError, match="No scan UUID"):
        _run_with(
            handler,
            lambda client: MaliciousUrlScanAdapter(client=client).submit(ScanRequest(url="https://example.org"), CONTEXT),
        )


def test_malicious_url_poll_maps_task_states() -> None:
    responses = iter(
        [
            httpx.Response(404, json={"message": "scan not found"}),
            httpx.Response(200, json={"task": {"status": "Queued"}}),
            httpx.Response(
                200,
                json={
                    "task": {"success": True, "screenshotURL": "https://shots.example/scan-1.png"},
                    "verdicts": {
                        "overall": {"malicious": True, "categories": ["phishing"], "tags": [], "hasVerdicts": True}
                    },
                },
            ),
            httpx.Response(200, json={"task": {"success": False}}),
        ]
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/client/v4/radar/url_scanner/result/scan-1"
        return next(responses)

    async def call(client: httpx.AsyncClient) -> list[Any]:
        adapter = MaliciousUrlScanAdapter(client=client)
        job = VerificationJob(job_id="scan-1", kind=adapter.kind)
        outcomes: list[Any] = []
        try:
            await adapter.poll(job, CONTEXT)
        except PollTransportError as exc:
            outcomes.append(exc)
        for _ in range(3):
            outcomes.append(await adapter.poll(job, CONTEXT))
        return outcomes

    missing, queued, done, failed = _run_with(handler, call)
    assert isinstance(missing, PollTransportError)
    assert queued == Processing()
    assert done == Succeeded(
        MaliciousUrlVerdict(
            is_malicious=True,
            categories=["phishing"],
            tags=[],
            has_verdicts=True,
            screenshot_url="https://shots.example/scan-1.png",
        )
    )
    assert failed == Failed("URL scan failed")


def test_malicious_url_screenshot_url_derivation() -> None:
    job = VerificationJob(job_id="scan-1", kind=MaliciousUrlScanAdapter.kind)
    verdict = MaliciousUrlVerdict()

    public = MaliciousUrlScanAdapter()
    account = MaliciousUrlScanAdapter(account_id="acc-9")

    assert public.screenshot_url_for(job, verdict) == (
        "https://api.cloudflare.com/client/v4/radar/url_scanner/scan/scan-1/screenshot"
    )
    assert account.screenshot_url_for(job, verdict) == (
        "https://api.cloudflare.com/client/v4/accounts/acc-9/urlscanner/v2/screenshots/scan-1.png"
    )
    assert public.follow_up(job, verdict, CONTEXT) is None


def test_warehouse_submit_completes_inline() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["useLegacySql"] is False
        assert body["location"] == "asia-southeast1"
        return httpx.Response(
            200,
            json={
                "jobComplete": True,
                "jobReference": {"projectId": "proj", "jobId": "job-7", "location": "asia-southeast1"},
                "rows": [{"f": [{"v": "hello"}]}],
                "totalRows": "1",
            },
        )

    job = _run_with(
        handler,
        lambda client: WarehouseQueryAdapter(project_id="proj", access_token="tok", client=client).submit(
            WarehouseQueryRequest(query="SELECT 1"), CONTEXT
        ),
    )

    assert job.job_id == "job-7"
    assert isinstance(job.initial_status, Succeeded)
    assert job.initial_status.payload == WarehouseRows(rows=[{"f": [{"v": "hello"}]}], total_rows=1)


def test_warehouse_submit_incomplete_then_poll_results() -> None:
    seen: list[httpx.URL] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        if request.method == "POST":
            return httpx.Response(
                200,
                json={
                    "jobComplete": False,
                    "jobReference": {"projectId": "proj", "jobId": "job-8", "location": "US"},
                },
            )
        if len(seen) == 2:
            return httpx.Response(200, json={"jobComplete": False})
        return httpx.Response(200, json={"jobComplete": True, "rows": [], "totalRows": "0"})

    async def call(client: httpx.AsyncClient) -> tuple[VerificationJob, Any, Any]:
        adapter = WarehouseQueryAdapter(project_id="proj", access_token=None, client=client)
        job = await adapter.submit(WarehouseQueryRequest(query="SELECT 1"), CONTEXT)
        return job, await adapter.poll(job, CONTEXT), await adapter.poll(job, CONTEXT)

    job, running, complete = _run_with(handler, call)

    assert job.initial_status is None
    assert job.extras == {"project_id": "proj", "location": "US"}
    assert seen[1].path == "/bigquery/v2/projects/proj/jobs/job-8/getQueryResults"
    assert seen[1].params["location"] == "US"
    assert running == Processing()
    assert complete == Succeeded(WarehouseRows(rows=[], total_rows=0))


def test_warehouse_poll_reports_query_errors_as_failed() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jobComplete": True, "errors": [{"message": "Syntax error", "reason": "invalid"}]})

    async def call(client: httpx.AsyncClient) -> Any:
        adapter = WarehouseQueryAdapter(project_id="proj", access_token="tok", client=client)
        return await adapter.poll(VerificationJob(job_id="job-9", kind=adapter.kind), CONTEXT)

    assert _run_with(handler, call) == Failed("Syntax error")


def test_warehouse_rows_column_values_skips_nulls() -> None:
    rows = WarehouseRows(rows=[{"f": [{"v": "a"}]}, {"f": [{"v": None}]}, {"f": []}, {"other": 1}])
    assert rows.column_values() == ["a"]


def test_reputation_poll_with_undecodable_body_times_out_instead_of_raising() -> None:
    polls: list[int] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(200, json={"success": True, "request_id": "r-2"})
        polls.append(1)
        return httpx.Response(200, content=b"\x80\x81garbage")

    async def no_sleep(delay: float) -> None:
        return None

    async def call(client: httpx.AsyncClient) -> Any:
        adapter = ReputationScanAdapter(hostname="https://scan.example", api_key="k", client=client)
        job = VerificationJob(job_id="r-2", kind=adapter.kind)
        with pytest.raises(InvalidResponseError):
            await adapter.poll(job, CONTEXT)
        poller = JobPoller(PollPolicy.fixed(interval=1.0, max_attempts=3), sleep=no_sleep)
        return await poller.run(adapter, ScanRequest(url="https://example.org"), CONTEXT)

    result = _run_with(handler, call)

    assert isinstance(result, TimedOut)
    assert len(polls) == 4


def test_malicious_url_poll_treats_null_verdict_fields_as_empty() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "task": {"success": True},
                "verdicts": {"overall": {"malicious": None, "categories": None, "tags": None, "hasVerdicts": None}},
            },
        )

    async def call(client: httpx.AsyncClient) -> Any:
        adapter = MaliciousUrlScanAdapter(client=client)
        return await adapter.poll(VerificationJob(job_id="u1", kind=adapter.kind), CONTEXT)

    assert _run_with(handler, call) == Succeeded(MaliciousUrlVerdict())


def test_malicious_url_success_renders_verdict_block() -> None:
    verdict = MaliciousUrlVerdict(
        is_malicious=True,
        categories=["phishing"],
        tags=["login"],
        has_verdicts=True,
        screenshot_url="https://shots.example/u1.png",
    )
    job = VerificationJob(job_id="u1", kind=MaliciousUrlScanAdapter.kind)

    assert Success(verdict, job=job).to_response("req-7") == {
        "success": True,
        "result": {
            "isMalicious": True,
            "verdict": {"categories": ["phishing"], "tags": ["login"], "hasVerdicts": True},
        },
        "id": "req-7",
    }


def test_reputation_score_keeps_the_api_number_type() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"overall_result": {"classification": "malicious", "score": 87}})

    async def call(client: httpx.AsyncClient) -> Any:
        adapter = ReputationScanAdapter(hostname="https://scan.example", api_key="k", client=client)
        return await adapter.poll(VerificationJob(job_id="r-3", kind=adapter.kind), CONTEXT)

    status = _run_with(handler, call)

    assert isinstance(status.payload.score, int)
    assert status.payload.model_dump(mode="json") == {"classification": "malicious", "score": 87}
