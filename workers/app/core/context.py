from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class CallContext:
    """Per-call logging context, passed explicitly instead of held on a shared object.

    Rendered as ``key=value`` pairs so it can be appended to any log line.
    """

    service: str
    request_id: str | None = None
    fields: tuple[tuple[str, Any], ...] = field(default_factory=tuple)

    def bind(self, **values: Any) -> CallContext:
        merged = dict(self.fields)
        merged.update(values)
        return replace(self, fields=tuple(merged.items()))

    def get(self, key: str, default: Any = None) -> Any:
        return dict(self.fields).get(key, default)

    def __str__(self) -> str:
        parts = [f"service={self.service}"]
        if self.request_id is not None:
            parts.append(f"request_id={self.request_id}")
        parts.extend(f"{key}={value}" for key, value in self.fields)
        return " ".join(parts)
