"""
In-process TTL + LRU caches shared across requests.

Each cache stripes its locking over a fixed pool of locks indexed by key hash,
so concurrent requests touching different keys never contend on one lock.
Recency is a monotonically increasing access stamp per entry; eviction picks the
smallest stamp from a snapshot taken outside any stripe lock.

Usage:
    registry = CacheRegistry.from_settings(settings)
    cached = registry.geocode.get(key)
    registry.geocode.set(key, coords)
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import itertools
import json
import re
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .logging_config import get_logger
from .metrics import track_cache_metrics
from .models import OpenNowFilter, ParsedIntent

logger = get_logger(__name__)

V = TypeVar("V")

DEFAULT_STRIPES = 16

GEOCODE = "geocode"
PROVIDER = "provider"
RANKING = "ranking"
SESSIONS = "sessions"
ASSISTANT = "assistant"


@dataclass(slots=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float
    inserted_at: float = 0.0
    last_access: int = 0
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def increment_hits(self) -> None:
        self.hits += 1


@dataclass(slots=True)
class _StripeStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0


class TTLCache(Generic[V]):
    """
    Bounded TTL cache with least-recently-used eviction.

    Args:
        name: Cache name used in stats and metrics labels
        max_size: Maximum number of live entries
        default_ttl: TTL in seconds when ``set`` is called without one
        enabled: When False, ``get`` always misses and ``set`` is a no-op
        clock: Monotonic time source (injectable for tests)
        stripes: Number of locks in the striping pool
    """

    def __init__(
        self,
        name: str,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        stripes: int = DEFAULT_STRIPES,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.name = name
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.enabled = enabled
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[V]] = {}
        self._locks = [threading.Lock() for _ in range(max(1, stripes))]
        self._stats = [_StripeStats() for _ in self._locks]
        self._stamp = itertools.count(1)

    def _stripe(self, key: Hashable) -> int:
        return hash(key) % len(self._locks)

    def get(self, key: Hashable) -> V | None:
        if not self.enabled:
            return None
        idx = self._stripe(key)
        with self._locks[idx]:
            entry = self._entries.get(key)
            if entry is None:
                self._stats[idx].misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats[idx].expirations += 1
                self._stats[idx].misses += 1
                return None
            entry.last_access = next(self._stamp)
            entry.increment_hits()
            self._stats[idx].hits += 1
            return entry.value

    def set(self, key: Hashable, value: V, ttl: float | None = None) -> None:
        if not self.enabled:
            return
        ttl = self.default_ttl if ttl is None else ttl
        idx = self._stripe(key)
        if ttl <= 0:
            with self._locks[idx]:
                self._entries.pop(key, None)
            return
        now = self._clock()
        entry = CacheEntry(
            value=value,
            expires_at=now + ttl,
            inserted_at=now,
            last_access=next(self._stamp),
        )
        with self._locks[idx]:
            self._entries[key] = entry
        if len(self._entries) > self.max_size:
            self._evict_overflow()

    def _evict_overflow(self) -> None:
        while len(self._entries) > self.max_size:
            snapshot = list(self._entries.items())
            if not snapshot:
                return
            victim_key, victim = min(snapshot, key=lambda item: item[1].last_access)
            idx = self._stripe(victim_key)
            with self._locks[idx]:
                # Another writer may have refreshed the key since the snapshot
                if self._entries.get(victim_key) is victim:
                    del self._entries[victim_key]
                    self._stats[idx].evictions += 1

    def delete(self, key: Hashable) -> bool:
        idx = self._stripe(key)
        with self._locks[idx]:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        for lock in self._locks:
            lock.acquire()
        try:
            self._entries.clear()
        finally:
            for lock in self._locks:
                lock.release()

    def cleanup_expired(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = self._clock()
        removed = 0
        for key, entry in list(self._entries.items()):
            if not entry.is_expired(now):
                continue
            idx = self._stripe(key)
            with self._locks[idx]:
                current = self._entries.get(key)
                if current is not None and current.is_expired(now):
                    del self._entries[key]
                    self._stats[idx].expirations += 1
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def stats(self) -> dict[str, Any]:
        hits = sum(s.hits for s in self._stats)
        misses = sum(s.misses for s in self._stats)
        total = hits + misses
        return {
            "name": self.name,
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": hits,
            "misses": misses,
            "evictions": sum(s.evictions for s in self._stats),
            "expirations": sum(s.expirations for s in self._stats),
            "hit_rate": round(hits / total, 4) if total else 0.0,
            "enabled": self.enabled,
        }


@dataclass
class CacheRegistry:
    """Named caches owned by one process, injected wherever they are used."""

    caches: dict[str, TTLCache[Any]] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> CacheRegistry:
        registry = cls()
        for name, size, ttl in (
            (GEOCODE, settings.GEOCODE_CACHE_SIZE, settings.GEOCODE_CACHE_TTL_SECONDS),
            (PROVIDER, settings.PROVIDER_CACHE_SIZE, settings.PROVIDER_CACHE_TTL_SECONDS),
            (RANKING, settings.RANKING_CACHE_SIZE, settings.RANKING_CACHE_TTL_SECONDS),
            (SESSIONS, settings.SESSION_CACHE_SIZE, settings.SESSION_TTL_SECONDS),
            (ASSISTANT, settings.ASSISTANT_CACHE_SIZE, settings.ASSISTANT_CACHE_TTL_SECONDS),
        ):
            registry.register(TTLCache(name, max_size=size, default_ttl=ttl, clock=clock))
        return registry

    def register(self, cache: TTLCache[Any]) -> TTLCache[Any]:
        if cache.name in self.caches:
            raise ValueError(f"Cache already registered: {cache.name}")
        self.caches[cache.name] = cache
        return cache

    def __getitem__(self, name: str) -> TTLCache[Any]:
        return self.caches[name]

    @property
    def geocode(self) -> TTLCache[Any]:
        return self.caches[GEOCODE]

    @property
    def provider(self) -> TTLCache[Any]:
        return self.caches[PROVIDER]

    @property
    def ranking(self) -> TTLCache[Any]:
        return self.caches[RANKING]

    @property
    def sessions(self) -> TTLCache[Any]:
        return self.caches[SESSIONS]

    @property
    def assistant(self) -> TTLCache[Any]:
        return self.caches[ASSISTANT]

    def clear_all(self) -> None:
        for cache in self.caches.values():
            cache.clear()
        logger.info("caches_cleared", caches=sorted(self.caches))

    def cleanup_expired(self) -> dict[str, int]:
        return {name: cache.cleanup_expired() for name, cache in self.caches.items()}

    def stats(self) -> dict[str, dict[str, Any]]:
        return {name: cache.stats() for name, cache in self.caches.items()}

    def export_metrics(self) -> None:
        for name, cache in self.caches.items():
            track_cache_metrics(name, cache.stats())


class CacheSweeper:
    """Background task that purges expired entries on a fixed cadence."""

    def __init__(self, registry: CacheRegistry, interval: float = 60.0) -> None:
        self.registry = registry
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cache-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def sweep_once(self) -> dict[str, int]:
        removed = self.registry.cleanup_expired()
        self.registry.export_metrics()
        if any(removed.values()):
            logger.debug("cache_sweep", removed=removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep_once()
            except Exception:
                logger.exception("cache_sweep_failed")


def make_cache_key(*parts: Any) -> str:
    """Stable 16-hex digest of the JSON-canonical form of ``parts``."""
    payload = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


TIME_SENSITIVE_WORDS = frozenset(
    {
        "open",
        "opened",
        "now",
        "tonight",
        "late",
        "פתוח",
        "פתוחה",
        "פתוחות",
        "פתוחים",
        "עכשיו",
        "открыт",
        "открыто",
        "открыта",
        "открыты",
        "сейчас",
        "ouvert",
        "maintenant",
        "abierto",
        "ahora",
        "مفتوح",
        "الآن",
    }
)

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def is_time_sensitive(text: str | None) -> bool:
    if not text:
        return False
    return any(word in TIME_SENSITIVE_WORDS for word in _WORD_RE.findall(text.lower()))


def provider_ttl_for(
    intent: ParsedIntent,
    results_empty: bool,
    *,
    query_text: str | None = None,
    default_ttl: float = 900.0,
    live_ttl: float = 300.0,
    empty_ttl: float = 120.0,
) -> float:
    """
    TTL for a places-search result set.

    Empty result sets get the shortest TTL; results that depend on the current
    open/closed state get the live-data TTL; everything else the default.
    """
    if results_empty:
        return empty_ttl
    if intent.filters.open_now is not OpenNowFilter.UNSET:
        return live_ttl
    if is_time_sensitive(query_text) or is_time_sensitive(intent.query):
        return live_ttl
    return default_ttl


__all__ = [
    "CacheEntry",
    "TTLCache",
    "CacheRegistry",
    "CacheSweeper",
    "make_cache_key",
    "is_time_sensitive",
    "provider_ttl_for",
    "GEOCODE",
    "PROVIDER",
    "RANKING",
    "SESSIONS",
    "ASSISTANT",
]
