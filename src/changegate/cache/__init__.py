"""Findings cache."""

from changegate.cache.backend import JsonFileCacheBackend, MemoryCacheBackend
from changegate.cache.store import CacheStore

__all__ = ["CacheStore", "JsonFileCacheBackend", "MemoryCacheBackend"]
