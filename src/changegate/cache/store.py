"""Fingerprint-validated findings cache."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from changegate.cache.backend import CacheBackend
from changegate.errors import CacheUnavailable
from changegate.types import CacheEntry, Finding

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


class CacheStore:
    """Per-path cache of findings keyed by content fingerprint.

    A lookup is a hit only when the stored fingerprint equals the file's
    current fingerprint. When the backend cannot be read the store degrades
    to all-miss, so findings are recomputed rather than masked.

    Writes for one path are serialized; writes for different paths only
    contend on the short critical section that swaps the entry in.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._path_locks: dict[str, threading.Lock] = {}
        self._dirty = False
        self.available = True
        self.errors: list[CacheUnavailable] = []
        self.hits = 0
        self.misses = 0
        self.writes = 0

    @classmethod
    def open(cls, backend: CacheBackend, *, clock: Callable[[], float] = time.time) -> CacheStore:
        store = cls(backend, clock=clock)
        store.load()
        return store

    def load(self) -> None:
        """Read every entry from the backend."""
        try:
            raw = self._backend.load()
        except CacheUnavailable as exc:
            self._mark_unavailable(exc)
            return

        entries: dict[str, CacheEntry] = {}
        for path, data in raw.items():
            try:
                entries[path] = CacheEntry.from_dict(path, data)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Dropping malformed cache entry for %s: %s", path, exc)
                self._dirty = True
        with self._lock:
            self._entries = entries
        logger.debug("Loaded %d cache entries", len(entries))

    def lookup(self, path: str, fingerprint: str | None) -> CacheEntry | None:
        """Return the entry for ``path`` if it is valid for ``fingerprint``."""
        if not self.available or fingerprint is None:
            self.misses += 1
            return None
        with self._lock:
            entry = self._entries.get(path)
        if entry is None or entry.fingerprint != fingerprint:
            self.misses += 1
            return None
        self.hits += 1
        return entry

    def put(
        self,
        path: str,
        fingerprint: str,
        findings: Iterable[Finding],
        analyses: Iterable[str],
    ) -> CacheEntry:
        """Store findings for ``path`` at ``fingerprint``; last writer wins."""
        with self._path_lock(path):
            entry = CacheEntry(
                path=path,
                fingerprint=fingerprint,
                findings=tuple(findings),
                analyses=frozenset(analyses),
                timestamp=self._clock(),
            )
            with self._lock:
                self._entries[path] = entry
                self._dirty = True
                self.writes += 1
        return entry

    def invalidate_all(self) -> int:
        """Drop every entry. Returns the number removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries = {}
            self._dirty = True
        return removed

    def prune(self, keep: Iterable[str], max_age_days: float) -> list[str]:
        """Evict entries absent from ``keep`` that are older than the horizon."""
        if max_age_days <= 0:
            return []
        keep_set = set(keep)
        cutoff = self._clock() - max_age_days * SECONDS_PER_DAY
        with self._lock:
            stale = sorted(
                path
                for path, entry in self._entries.items()
                if path not in keep_set and entry.timestamp < cutoff
            )
            for path in stale:
                del self._entries[path]
            if stale:
                self._dirty = True
        if stale:
            logger.debug("Pruned %d stale cache entries", len(stale))
        return stale

    def flush(self) -> bool:
        """Persist entries if anything changed. Returns True when written."""
        with self._lock:
            if not self._dirty:
                return False
            payload: dict[str, dict[str, Any]] = {
                path: entry.to_dict() for path, entry in sorted(self._entries.items())
            }
        try:
            self._backend.save(payload)
        except CacheUnavailable as exc:
            self.errors.append(exc)
            logger.warning("%s", exc)
            return False
        with self._lock:
            self._dirty = False
        return True

    def snapshot(self) -> dict[str, CacheEntry]:
        with self._lock:
            return dict(self._entries)

    def _path_lock(self, path: str) -> threading.Lock:
        with self._lock:
            lock = self._path_locks.get(path)
            if lock is None:
                lock = threading.Lock()
                self._path_locks[path] = lock
            return lock

    def _mark_unavailable(self, exc: CacheUnavailable) -> None:
        logger.warning("%s; every file will be analyzed", exc)
        self.available = False
        self.errors.append(exc)
