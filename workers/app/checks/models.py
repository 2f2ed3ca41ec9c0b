from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CATEGORY = "unsure"


class CheckRecord(BaseModel):
    """Stored fields of a check that this worker reads or writes."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    is_human_assessed: bool = Field(default=False, alias="isHumanAssessed")
    crowdsourced_category: str | None = Field(default=DEFAULT_CATEGORY, alias="crowdsourcedCategory")
    community_note_downvoted: bool = Field(default=False, alias="communityNoteDownvoted")
    notification_id: int | None = Field(default=None, alias="notificationId")
    community_note_notification_id: int | None = Field(default=None, alias="communityNoteNotificationId")


class UpdateEvent(BaseModel):
    """Queue message body. Absent fields leave the stored value untouched."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    check_id: str = Field(alias="id", min_length=1)
    is_human_assessed: bool | None = Field(default=None, alias="isHumanAssessed")
    is_community_note_downvoted: bool | None = Field(default=None, alias="isCommunityNoteDownvoted")
    crowdsourced_category: str | None = Field(default=None, alias="crowdsourcedCategory")

    def to_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if self.is_human_assessed is not None:
            fields["is_human_assessed"] = self.is_human_assessed
        if self.is_community_note_downvoted is not None:
            fields["community_note_downvoted"] = self.is_community_note_downvoted
        if self.crowdsourced_category is not None:
            fields["crowdsourced_category"] = self.crowdsourced_category
        return fields


@dataclass(frozen=True, slots=True)
class StateDelta:
    became_human_assessed: bool = False
    became_downvoted: bool = False
    crowdsourced_category_changed: bool = False
    previous_category: str | None = None
    current_category: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.became_human_assessed or self.became_downvoted or self.crowdsourced_category_changed)


class CheckEventType(str, Enum):
    ASSESSED = "assessed"
    DOWNVOTED = "downvoted"


class CheckEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    check_id: str = Field(alias="checkId")
    type: CheckEventType


@dataclass(frozen=True, slots=True)
class UpdateResult:
    success: bool
    changes: StateDelta | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class FindResult:
    success: bool
    data: CheckRecord | None = None
    error: str | None = None


@dataclass(slots=True)
class ProcessOutcome:
    check_id: str
    success: bool
    changes: StateDelta | None = None
    dispatched: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
