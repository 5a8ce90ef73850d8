"""
Caching utilities for radlaudo.
In-memory cache for grounding context blocks, invalidated by explicit
per-exam-type version counters and bounded by a TTL.
"""

import time
from typing import Any, Optional, Dict
from threading import Lock

from .config import settings

ALL_EXAM_TYPES = "*"


class ContextVersionRegistry:
    """Monotonic version counters per exam type.

    Every template, region or finding mutation bumps the counter of the
    affected exam type and the global counter, so entries built for a
    single exam type and entries built over all exam types both go stale.
    """

    def __init__(self):
        self._versions: Dict[str, int] = {}
        self._lock = Lock()

    def version(self, exam_type: Optional[str] = None) -> int:
        with self._lock:
            return self._versions.get(exam_type or ALL_EXAM_TYPES, 0)

    def bump(self, *exam_types: Optional[str]) -> None:
        with self._lock:
            for exam_type in {e for e in exam_types if e}:
                self._versions[exam_type] = self._versions.get(exam_type, 0) + 1
            self._versions[ALL_EXAM_TYPES] = self._versions.get(ALL_EXAM_TYPES, 0) + 1


class CacheManager:
    """Thread-safe in-memory cache with version and TTL checks."""

    def __init__(self, registry: Optional[ContextVersionRegistry] = None):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()
        self._enabled = settings.enable_caching
        self._ttl = settings.cache_ttl
        self.registry = registry or ContextVersionRegistry()
        self._hits = 0
        self._misses = 0

    def _is_expired(self, entry: Dict[str, Any]) -> bool:
        """Check if cache entry has expired."""
        return time.time() > entry.get("expires_at", 0)

    def make_key(self, scope: str, exam_type: Optional[str] = None) -> str:
        return f"{scope}:{exam_type or ALL_EXAM_TYPES}"

    def get(self, key: str, exam_type: Optional[str] = None) -> Optional[Any]:
        """Get value from cache if it was built under the current version."""
        if not self._enabled:
            return None

        current = self.registry.version(exam_type)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._is_expired(entry) or entry["version"] != current:
                del self._cache[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry["value"]

    def set(
        self,
        key: str,
        value: Any,
        version: int,
        ttl: Optional[float] = None,
    ) -> None:
        """Store a value tagged with the version it was computed against."""
        if not self._enabled:
            return

        ttl = ttl or self._ttl
        with self._lock:
            self._cache[key] = {
                "value": value,
                "version": version,
                "expires_at": time.time() + ttl,
                "created_at": time.time(),
            }

    def invalidate(self, *exam_types: Optional[str]) -> None:
        """Mark every entry for the given exam types as stale."""
        self.registry.bump(*exam_types)

    def delete(self, key: str) -> None:
        """Delete value from cache."""
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total_entries = len(self._cache)
            expired_entries = sum(
                1 for entry in self._cache.values() if self._is_expired(entry)
            )

            return {
                "total_entries": total_entries,
                "active_entries": total_entries - expired_entries,
                "expired_entries": expired_entries,
                "hits": self._hits,
                "misses": self._misses,
                "enabled": self._enabled,
                "ttl_seconds": self._ttl,
            }


# Global cache instance
cache_manager = CacheManager()


def get_cache_stats() -> Dict[str, Any]:
    """Get cache statistics."""
    return cache_manager.get_stats()


def clear_cache() -> None:
    """Clear all cache entries."""
    cache_manager.clear()
