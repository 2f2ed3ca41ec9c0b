from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from app.checks.models import CheckRecord, StateDelta

UPDATABLE_FIELDS = frozenset({"is_human_assessed", "community_note_downvoted", "crowdsourced_category"})
ONE_WAY_FIELDS = ("is_human_assessed", "community_note_downvoted")


def apply_update(record: CheckRecord, fields: Mapping[str, Any]) -> CheckRecord:
    """Return ``record`` with the partial update applied.

    One-way flags are never reset once true. Notification ids are not updatable here.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"fields not updatable: {sorted(unknown)}")

    updates = dict(fields)
    for name in ONE_WAY_FIELDS:
        if getattr(record, name) and updates.get(name) is False:
            del updates[name]
    if not updates:
        return record
    return record.model_copy(update=updates)


def compute_delta(before: CheckRecord, after: CheckRecord) -> StateDelta:
    category_changed = before.crowdsourced_category != after.crowdsourced_category
    return StateDelta(
        became_human_assessed=not before.is_human_assessed and after.is_human_assessed,
        became_downvoted=not before.community_note_downvoted and after.community_note_downvoted,
        crowdsourced_category_changed=category_changed,
        previous_category=before.crowdsourced_category if category_changed else None,
        current_category=after.crowdsourced_category if category_changed else None,
    )
