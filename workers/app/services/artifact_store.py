from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Protocol


class ArtifactStore(Protocol):
    async def put(self, key: str, data: bytes, *, content_type: str, metadata: dict[str, str]) -> None: ...


class LocalArtifactStore:
    """Filesystem-backed artifact store. ``key`` is a relative path; metadata sits beside it as JSON."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    def path_for(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise ValueError(f"artifact key escapes the store: {key!r}")
        return path

    async def put(self, key: str, data: bytes, *, content_type: str, metadata: dict[str, str]) -> None:
        path = self.path_for(key)
        sidecar = json.dumps({"contentType": content_type, **metadata}, sort_keys=True).encode("utf-8")
        await asyncio.to_thread(_write_with_sidecar, path, data, sidecar)


def _write_with_sidecar(path: Path, data: bytes, sidecar: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    _write_atomic(path, data)
    _write_atomic(path.with_name(path.name + ".json"), sidecar)


def _write_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)
