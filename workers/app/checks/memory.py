from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from app.checks.delta import apply_update, compute_delta
from app.checks.models import CheckRecord, FindResult, UpdateResult


class InMemoryCheckRepository:
    """Process-local record store.

    Read, apply and write happen without an await in between, so each update is
    atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self, records: Iterable[CheckRecord] = ()) -> None:
        self._records: dict[str, CheckRecord] = {record.id: record for record in records}

    def get(self, check_id: str) -> CheckRecord | None:
        return self._records.get(check_id)

    def put(self, record: CheckRecord) -> None:
        self._records[record.id] = record

    async def update_check_with_changes(self, check_id: str, fields: dict[str, Any]) -> UpdateResult:
        before = self._records.get(check_id)
        if before is None:
            return UpdateResult(success=False, error="check not found")
        try:
            after = apply_update(before, fields)
        except ValueError as exc:
            return UpdateResult(success=False, error=str(exc))
        self._records[check_id] = after
        return UpdateResult(success=True, changes=compute_delta(before, after))

    async def find_check_by_id(self, check_id: str) -> FindResult:
        record = self._records.get(check_id)
        if record is None:
            return FindResult(success=False, error="check not found")
        return FindResult(success=True, data=record)
