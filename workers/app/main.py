from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from opentelemetry import trace

from app.checks.consumer import QueueConsumer
from app.checks.notifier import StateDeltaNotifier
from app.core.config import Settings, get_settings
from app.core.context import CallContext
from app.core.telemetry import (
    configure_worker_logging,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
)
from app.jobs.background import BackgroundTaskScheduler
from app.jobs.digest import DIGEST_JOB_KIND, collect_flagged_messages
from app.jobs.executor import VerificationService, execute_job
from app.services.check_repository import CheckRepositoryClient
from app.services.event_publisher import EventPublisherClient
from app.services.job_client import JobClient
from app.services.notification_client import NotificationClient
from app.services.queue_client import QueueClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def build_consumer(settings: Settings) -> QueueConsumer:
    notifier = StateDeltaNotifier(
        repository=CheckRepositoryClient(
            settings.database_service_url,
            settings.service_api_key,
            timeout_seconds=settings.http_timeout_seconds,
        ),
        notifications=NotificationClient(
            settings.notification_service_url,
            settings.service_api_key,
            timeout_seconds=settings.http_timeout_seconds,
        ),
        events=EventPublisherClient(
            settings.events_service_url,
            settings.service_api_key,
            timeout_seconds=settings.http_timeout_seconds,
        ),
    )
    return QueueConsumer(notifier)


async def run_queue_cycle(queue: QueueClient, consumer: QueueConsumer, settings: Settings) -> int:
    messages = await queue.pull(limit=settings.queue_batch_size)
    if not messages:
        return 0
    context = CallContext(service="checks-service").bind(queue=settings.queue_name)
    await consumer.consume(messages, context)
    # Failed updates are reported, not retried here.
    await queue.ack([message.message_id for message in messages])
    return len(messages)


async def run_job(job: dict[str, Any], service: VerificationService, settings: Settings) -> dict[str, Any]:
    if job.get("kind") != DIGEST_JOB_KIND:
        return await execute_job(job, service)
    return await collect_flagged_messages(
        service,
        project_id=settings.bigquery_project_id,
        dataset_id=settings.digest_dataset_id,
        table_id=settings.digest_table_id,
        window_days=settings.digest_window_days,
        context=CallContext(service="digest", request_id=job.get("id")),
    )


async def run_verification_cycle(client: JobClient, service: VerificationService, settings: Settings) -> int:
    jobs = await client.get_jobs(limit=settings.jobs_batch_size)
    for job in jobs:
        with tracer.start_as_current_span("worker.process_job") as job_span:
            job_span.set_attribute("job.id", job["id"])
            claimed = await client.claim_job(job["id"], lease_seconds=settings.claim_lease_seconds)
            try:
                response = await run_job(claimed, service, settings)
            except Exception as exc:  # pragma: no cover - loop robustness
                logger.exception("verification job failed for id=%s", claimed["id"])
                response = {"success": False, "error": {"message": str(exc)}, "id": claimed["id"]}
            await client.submit_result(claimed["id"], response)
    return len(jobs)


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging(settings.log_level)
    telemetry_runtime = setup_worker_telemetry(settings)
    scheduler = BackgroundTaskScheduler()
    queue = QueueClient(
        settings.queue_service_url,
        settings.queue_name,
        settings.service_api_key,
        timeout_seconds=settings.http_timeout_seconds,
    )
    consumer = build_consumer(settings)
    job_client = JobClient(
        settings.jobs_service_url,
        settings.service_api_key,
        timeout_seconds=settings.http_timeout_seconds,
    )
    verification = VerificationService.from_settings(settings, scheduler=scheduler)

    backoff = settings.queue_poll_interval_seconds
    try:
        while True:
            try:
                with tracer.start_as_current_span("worker.queue_cycle"):
                    consumed = await run_queue_cycle(queue, consumer, settings)
                    consumed += await run_verification_cycle(job_client, verification, settings)
                if not consumed:
                    await asyncio.sleep(settings.queue_poll_interval_seconds)
                backoff = settings.queue_poll_interval_seconds
            except Exception as exc:  # pragma: no cover - loop robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
                logger.exception("worker iteration failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = sleep_for
    finally:
        await scheduler.shutdown(timeout=settings.background_drain_timeout_seconds)
        shutdown_worker_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
