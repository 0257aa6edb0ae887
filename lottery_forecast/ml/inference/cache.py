"""In-process cache with single-flight computation, TTL expiry and LRU eviction."""

import asyncio
import hashlib
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

from loguru import logger

DEFAULT_TTL_BY_TYPE = {"prediction": 3600.0, "features": 6 * 3600.0, "model": 24 * 3600.0}


def make_key(lottery_type: str, strategy: str | int, target_date: date | None, params: Mapping | None = None) -> str:
    """Stable cache key; params are hashed over canonical JSON."""
    canonical = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode()).hexdigest()
    day = target_date.isoformat() if target_date else "-"
    return f"{lottery_type}:{strategy}:{day}:{digest}"


@dataclass
class CacheEntry:
    value: Any
    cache_type: str
    expires_at: float
    priority: int
    last_access: float
    hit_count: int = 0


class PredictionCache:
    """Cache used by the predictor for prediction results, feature sets and loaded models.

    All methods must be called from the event loop thread. Failed computations
    are not cached; every waiter of a failed computation receives its exception.
    """

    def __init__(
        self,
        max_entries: int = 512,
        default_ttl: float = 3600.0,
        ttl_by_type: Mapping[str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self.ttl_by_type = dict(DEFAULT_TTL_BY_TYPE if ttl_by_type is None else ttl_by_type)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._computations = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._lookup(key, touch=False) is not None

    def ttl_for(self, cache_type: str) -> float:
        return self.ttl_by_type.get(cache_type, self.default_ttl)

    # ── reads / writes ───────────────────────────────────────────────

    def _lookup(self, key: str, touch: bool = True) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.expires_at <= now:
            del self._entries[key]
            self._expirations += 1
            return None
        if touch:
            entry.last_access = now
            entry.hit_count += 1
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._lookup(key)
        if entry is None:
            self._misses += 1
            return default
        self._hits += 1
        return entry.value

    def set(
        self,
        key: str,
        value: Any,
        cache_type: str = "prediction",
        ttl: float | None = None,
        priority: int = 0,
    ) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(
            value=value,
            cache_type=cache_type,
            expires_at=now + (ttl if ttl is not None else self.ttl_for(cache_type)),
            priority=priority,
            last_access=now,
        )
        self._evict()

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        cache_type: str = "prediction",
        ttl: float | None = None,
        priority: int = 0,
    ) -> Any:
        """Return the cached value, joining an in-flight computation for the same key if any.

        The computation runs in its own task, so cancelling the caller that
        started it leaves the other waiters (and the cache fill) unaffected.
        """
        entry = self._lookup(key)
        if entry is not None:
            self._hits += 1
            return entry.value

        task = self._inflight.get(key)
        if task is None:
            self._misses += 1
            self._computations += 1
            task = asyncio.ensure_future(self._compute(key, compute, cache_type, ttl, priority))
            self._inflight[key] = task
        else:
            self._hits += 1
        # shield: a cancelled waiter must not cancel the shared computation
        return await asyncio.shield(task)

    async def _compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        cache_type: str,
        ttl: float | None,
        priority: int,
    ) -> Any:
        try:
            value = await compute()
        finally:
            self._inflight.pop(key, None)
        self.set(key, value, cache_type=cache_type, ttl=ttl, priority=priority)
        return value

    # ── maintenance ──────────────────────────────────────────────────

    def _evict(self) -> None:
        if len(self._entries) <= self.max_entries:
            return
        self.purge_expired()
        while len(self._entries) > self.max_entries:
            # Lowest priority first, then least recently used
            key = min(self._entries, key=lambda k: (self._entries[k].priority, self._entries[k].last_access))
            entry = self._entries.pop(key)
            self._evictions += 1
            logger.debug("Cache evicted {} ({}, priority {})", key, entry.cache_type, entry.priority)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        return len(expired)

    def invalidate(self, predicate: Callable[[str, CacheEntry], bool]) -> int:
        keys = [k for k, e in self._entries.items() if predicate(k, e)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def invalidate_lottery(self, lottery_type: str) -> int:
        return self.invalidate(lambda key, _: key.startswith(f"{lottery_type}:"))

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        lookups = self._hits + self._misses
        by_type: dict[str, int] = {}
        for entry in self._entries.values():
            by_type[entry.cache_type] = by_type.get(entry.cache_type, 0) + 1
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "by_type": by_type,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "evictions": self._evictions,
            "expirations": self._expirations,
            "computations": self._computations,
            "inflight": len(self._inflight),
        }
