from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from app.core.context import CallContext
from app.jobs.adapters.warehouse import WarehouseQueryRequest
from app.jobs.executor import VerificationService
from app.jobs.models import JobKind, Success, WarehouseRows

logger = logging.getLogger(__name__)

DIGEST_JOB_KIND = "flagged_messages_digest"
FLAGGED_CATEGORIES = ("scam", "misleading")


def build_flagged_messages_query(
    *,
    project_id: str,
    dataset_id: str,
    table_id: str,
    start: datetime,
    end: datetime,
    categories: tuple[str, ...] = FLAGGED_CATEGORIES,
) -> str:
    category_filter = " OR ".join(f'primaryCategory = "{category}"' for category in categories)
    return (
        "SELECT originalText\n"
        f"FROM `{project_id}.{dataset_id}.{table_id}`\n"
        f"WHERE firstTimestamp >= TIMESTAMP('{start.isoformat()}')\n"
        f"  AND firstTimestamp < TIMESTAMP('{end.isoformat()}')\n"
        "  AND originalText IS NOT NULL\n"
        f"  AND ({category_filter})"
    )


async def collect_flagged_messages(
    service: VerificationService,
    *,
    project_id: str,
    dataset_id: str,
    table_id: str,
    window_days: int = 7,
    now: datetime | None = None,
    context: CallContext | None = None,
) -> dict[str, object]:
    """Texts of recently flagged messages, for the weekly digest."""
    end = now or datetime.now(timezone.utc)
    start = end - timedelta(days=window_days)
    context = context or CallContext(service="digest")
    query = build_flagged_messages_query(
        project_id=project_id,
        dataset_id=dataset_id,
        table_id=table_id,
        start=start,
        end=end,
    )

    result = await service.verify(JobKind.WAREHOUSE_QUERY, WarehouseQueryRequest(query=query), context)
    if not isinstance(result, Success) or not isinstance(result.payload, WarehouseRows):
        logger.error("digest query did not complete %s", context)
        return result.to_response(context.request_id)

    messages = result.payload.column_values(0)
    logger.info("digest rows received count=%s total_rows=%s %s", len(messages), result.payload.total_rows, context)
    return {"success": True, "data": messages, "totalRows": result.payload.total_rows}
