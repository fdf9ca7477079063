"""relaygraph.core.cache

Short-lived read cache keyed by query shape, e.g. ``("zaps", target_id)``.

A cached read is a convenience, never ground truth: mutations always read fresh,
and successful writes invalidate the keys they touch.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from typing import Any

CacheKey = tuple[Hashable, ...]


class TTLCache:
    """TTL cache for a single event loop. No locks: keys are independent."""

    def __init__(self, default_ttl_s: float = 30.0, *, clock: Callable[[], float] = time.monotonic):
        self._default_ttl_s = float(default_ttl_s)
        self._clock = clock
        self._store: dict[CacheKey, tuple[float, Any]] = {}

    def get(self, key: CacheKey) -> Any | None:
        item = self._store.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() < expires_at:
            return value
        self._store.pop(key, None)
        return None

    def set(self, key: CacheKey, value: Any, *, ttl_s: float | None = None) -> None:
        ttl = self._default_ttl_s if ttl_s is None else float(ttl_s)
        if ttl <= 0:
            return
        self._store[key] = (self._clock() + ttl, value)

    def invalidate(self, key: CacheKey) -> None:
        self._store.pop(key, None)

    def invalidate_prefix(self, *prefix: Hashable) -> int:
        """Drop every key starting with ``prefix``. Returns how many were dropped."""

        n = len(prefix)
        doomed = [k for k in self._store if k[:n] == prefix]
        for k in doomed:
            self._store.pop(k, None)
        return len(doomed)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)
