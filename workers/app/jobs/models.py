from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, model_serializer


class JobKind(str, Enum):
    REPUTATION_SCAN = "reputation_scan"
    MALICIOUS_URL_SCAN = "malicious_url_scan"
    WAREHOUSE_QUERY = "warehouse_query"


class PollOutcome(str, Enum):
    PENDING = "pending"
    TERMINAL = "terminal"
    TRANSIENT_ERROR = "transient_error"


class ReputationVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    classification: str
    score: int | float


class MaliciousUrlVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_malicious: bool = False
    categories: list[Any] = Field(default_factory=list)
    tags: list[Any] = Field(default_factory=list)
    has_verdicts: bool = False
    screenshot_url: str | None = None

    @model_serializer
    def _result_shape(self) -> dict[str, Any]:
        return {
            "isMalicious": self.is_malicious,
            "verdict": {"categories": self.categories, "tags": self.tags, "hasVerdicts": self.has_verdicts},
        }


class WarehouseRows(BaseModel):
    model_config = ConfigDict(frozen=True)

    rows: list[dict[str, Any]] = Field(default_factory=list)
    total_rows: int = 0

    def column_values(self, index: int = 0) -> list[Any]:
        """Flatten the ``{"f": [{"v": ...}]}`` cell format into one column's non-null values."""
        values: list[Any] = []
        for row in self.rows:
            cells = row.get("f")
            if not isinstance(cells, list) or len(cells) <= index:
                continue
            cell = cells[index]
            value = cell.get("v") if isinstance(cell, dict) else None
            if value:
                values.append(value)
        return values


@dataclass(frozen=True, slots=True)
class Queued:
    pass


@dataclass(frozen=True, slots=True)
class Processing:
    pass


@dataclass(frozen=True, slots=True)
class Succeeded:
    payload: BaseModel


@dataclass(frozen=True, slots=True)
class Failed:
    reason: str


JobStatus = Union[Queued, Processing, Succeeded, Failed]
TERMINAL_STATUSES = (Succeeded, Failed)


@dataclass(frozen=True, slots=True)
class VerificationJob:
    """A job the remote system accepted.

    ``initial_status`` is set when the submit call already carried a terminal answer,
    in which case nothing is polled. ``extras`` holds adapter-specific handle fields.
    """

    job_id: str
    kind: JobKind
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    result_url: str | None = None
    initial_status: Succeeded | Failed | None = None
    extras: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PollAttempt:
    attempt_number: int
    at: datetime
    outcome: PollOutcome


@dataclass(frozen=True, slots=True)
class Success:
    payload: BaseModel
    job: VerificationJob
    attempts: tuple[PollAttempt, ...] = ()

    def to_response(self, request_id: str | None = None) -> dict[str, Any]:
        return {"success": True, "result": self.payload.model_dump(mode="json"), "id": request_id}


@dataclass(frozen=True, slots=True)
class Failure:
    reason: str
    job: VerificationJob | None = None
    attempts: tuple[PollAttempt, ...] = ()

    def to_response(self, request_id: str | None = None) -> dict[str, Any]:
        return {"success": False, "error": {"message": self.reason}, "id": request_id}


@dataclass(frozen=True, slots=True)
class TimedOut:
    last_known_reference: str | None
    job: VerificationJob
    attempts: tuple[PollAttempt, ...] = ()

    def to_response(self, request_id: str | None = None) -> dict[str, Any]:
        message = "Scan did not complete within timeout."
        if self.last_known_reference:
            message = f"{message} Manual review: {self.last_known_reference}"
        return {
            "success": False,
            "error": {"message": message, "code": "timed_out", "details": {"jobId": self.job.job_id}},
            "id": request_id,
        }


JobResult = Union[Success, Failure, TimedOut]
