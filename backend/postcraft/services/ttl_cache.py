"""
Bounded in-memory cache with per-entry TTL.

Replaces ad-hoc module-level dicts for cross-request state. Expiry is checked
on read; when the cache is full, expired entries are dropped first and then
the oldest 10% (at least one entry).
"""
from __future__ import annotations

import time
from threading import Lock
from typing import Any, Callable


class TTLCache:

    def __init__(self, max_size: int = 1000, default_ttl: float = 3600, clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be positive")
        self._cache: dict[str, dict[str, Any]] = {}
        self._lock = Lock()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def _is_expired(self, entry: dict, now: float) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is not None and now >= expires_at

    def _evict_if_needed(self, now: float):
        if len(self._cache) < self._max_size:
            return
        for key in [k for k, e in self._cache.items() if self._is_expired(e, now)]:
            del self._cache[key]
        if len(self._cache) < self._max_size:
            return
        oldest = sorted(self._cache.items(), key=lambda item: item[1]["created_at"])
        for key, _ in oldest[:max(1, self._max_size // 10)]:
            del self._cache[key]

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return default
            if self._is_expired(entry, self._clock()):
                del self._cache[key]
                self._misses += 1
                return default
            self._hits += 1
            return entry["value"]

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            if key not in self._cache:
                self._evict_if_needed(now)
            self._cache[key] = {
                "value": value,
                "created_at": now,
                "expires_at": now + ttl if ttl > 0 else None,
            }

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> dict:
        with self._lock:
            now = self._clock()
            return {
                "size": len(self._cache),
                "max_size": self._max_size,
                "expired_entries": sum(1 for e in self._cache.values() if self._is_expired(e, now)),
                "hits": self._hits,
                "misses": self._misses,
            }
