"""In-process TTL cache for provider responses."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from legend_ranker.config import SETTINGS
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("cache")

T = TypeVar("T")


def _ttl_config() -> dict:
    return SETTINGS.get("cache", {}).get("ttl_seconds", {}) or {}


def ttl_for(category: str) -> float:
    """TTL in seconds for a cache category (``cache.ttl_seconds`` in settings)."""
    config = _ttl_config()
    return float(config.get(category, config.get("default", 300)))


@dataclass
class CacheEntry:
    key: str
    data: Any
    created: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created >= self.ttl


class DataCache:
    """Key/value memoizer with per-entry TTL.

    Entries are served while ``now - created < ttl``. When an event loop is
    running, ``set`` also schedules a deferred eviction at ``ttl`` so idle
    entries do not linger.
    """

    def __init__(self, default_ttl: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl if default_ttl is not None else ttl_for("default")
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def get(self, key: str) -> Any | None:
        """Return the cached payload, or ``None`` if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            self.delete(key)
            return None
        return entry.data

    def set(self, key: str, data: Any, ttl: float | None = None) -> None:
        """Store ``data`` under ``key`` for ``ttl`` seconds."""
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(key=key, data=data, created=self._clock(), ttl=ttl)
        self._entries[key] = entry
        self._schedule_eviction(entry)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def keys(self) -> list[str]:
        self._clean_expired()
        return list(self._entries)

    def size(self) -> int:
        self._clean_expired()
        return len(self._entries)

    def stats(self) -> dict:
        self._clean_expired()
        return {
            "size": len(self._entries),
            "keys": list(self._entries),
            "total_memory_estimate": self._estimate_memory(),
        }

    def _schedule_eviction(self, entry: CacheEntry) -> None:
        old = self._timers.pop(entry.key, None)
        if old is not None:
            old.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[entry.key] = loop.call_later(entry.ttl, self._evict_if_current, entry)

    def _evict_if_current(self, entry: CacheEntry) -> None:
        self._timers.pop(entry.key, None)
        # A newer set() for the same key owns the slot now
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
            logger.debug("Evicted expired entry: %s", entry.key)

    def _clean_expired(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expired(now)]:
            self.delete(key)

    def _estimate_memory(self) -> str:
        payload = json.dumps({k: e.data for k, e in self._entries.items()}, default=str)
        size = len(payload.encode())
        if size < 1024:
            return f"{size} B"
        if size < 1024 * 1024:
            return f"{size / 1024:.1f} KB"
        return f"{size / (1024 * 1024):.1f} MB"


# Process-wide instance used by the pipeline
data_cache = DataCache()


class cache_keys:
    """Key builders for the cached resources."""

    @staticmethod
    def fundamentals(symbol: str) -> str:
        return f"fundamentals_{symbol}"

    @staticmethod
    def realtime_price(symbol: str) -> str:
        return f"price_{symbol}"

    @staticmethod
    def exchange_symbols(exchange: str) -> str:
        return f"exchange_{exchange}"

    @staticmethod
    def sector_data(sector: str) -> str:
        return f"sector_{sector}"

    @staticmethod
    def rankings(list_id: str) -> str:
        return f"rankings_{list_id}"


async def with_cache(
    key: str,
    fetch_fn: Callable[[], Awaitable[T]],
    ttl: float | None = None,
    cache: DataCache | None = None,
) -> T:
    """Return the cached value for ``key`` or await ``fetch_fn`` and store it.

    Concurrent misses on the same key are not coalesced; each caller fetches.
    ``None`` results are returned but not stored.
    """
    cache = cache if cache is not None else data_cache
    cached = cache.get(key)
    if cached is not None:
        logger.debug("Cache hit: %s", key)
        return cached

    data = await fetch_fn()
    if data is not None:
        cache.set(key, data, ttl)
    return data
