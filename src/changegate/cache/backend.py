"""Durable storage for the findings cache."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from changegate.errors import CacheUnavailable

CACHE_SCHEMA_VERSION = "1.0"


class CacheBackend(Protocol):
    """Key-value persistence collaborator: path -> serialized entry."""

    def load(self) -> dict[str, dict[str, Any]]: ...

    def save(self, entries: dict[str, dict[str, Any]]) -> None: ...


class MemoryCacheBackend:
    """In-process backend, used when caching is disabled and in tests."""

    def __init__(self, entries: dict[str, dict[str, Any]] | None = None) -> None:
        self.entries: dict[str, dict[str, Any]] = dict(entries or {})
        self.saves = 0

    def load(self) -> dict[str, dict[str, Any]]:
        return json.loads(json.dumps(self.entries))

    def save(self, entries: dict[str, dict[str, Any]]) -> None:
        self.entries = json.loads(json.dumps(entries))
        self.saves += 1


class JsonFileCacheBackend:
    """Single JSON document on disk, written atomically."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise CacheUnavailable(f"Cannot read cache {self.path}: {exc}") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("entries"), dict):
            raise CacheUnavailable(f"Cannot read cache {self.path}: unexpected document layout")
        if payload.get("schema_version") != CACHE_SCHEMA_VERSION:
            raise CacheUnavailable(
                f"Cannot read cache {self.path}: schema_version {payload.get('schema_version')!r} "
                f"!= {CACHE_SCHEMA_VERSION!r}"
            )
        return payload["entries"]

    def save(self, entries: dict[str, dict[str, Any]]) -> None:
        payload = {"schema_version": CACHE_SCHEMA_VERSION, "entries": entries}
        rendered = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
        try:
            _atomic_write(self.path, rendered)
        except OSError as exc:
            raise CacheUnavailable(f"Cannot write cache {self.path}: {exc}") from exc


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            delete=False,
            prefix=f".{path.name}.",
            suffix=".tmp",
        ) as tmp_file:
            tmp_file.write(content)
            tmp_path = Path(tmp_file.name)
        os.replace(tmp_path, path)
    except Exception:
        if "tmp_path" in locals() and tmp_path.exists():
            tmp_path.unlink()
        raise
