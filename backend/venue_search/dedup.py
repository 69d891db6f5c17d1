"""
In-flight request de-duplication.

Concurrent callers asking for the same key share one producer task. Each
waiter awaits a shielded view of the task, so one waiter timing out or being
cancelled never cancels the shared work for the others.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Callable, Hashable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from .errors import DeadlineExceeded
from .logging_config import get_logger
from .metrics import dedup_coalesced_total
from .models import Coordinates

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class DedupStats:
    """Counters for dedup activity."""

    calls: int = 0
    producers: int = 0
    coalesced: int = 0

    @property
    def coalesce_rate(self) -> float:
        if self.calls == 0:
            return 0.0
        return self.coalesced / self.calls


class RequestDeduplicator:
    """
    Coalesces concurrent calls that share a key onto a single producer.

    The producer's task is removed from the in-flight table as soon as it
    completes; later calls with the same key start a fresh producer. Results
    are not cached here; that is the cache layer's job.
    """

    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._in_flight: dict[Hashable, asyncio.Task] = {}
        self.stats_counters = DedupStats()

    async def dedupe(
        self,
        key: Hashable,
        producer: Callable[[], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        """
        Run ``producer`` once per key across all concurrent callers.

        Args:
            key: Canonical key covering every input that affects the result
            producer: Zero-argument coroutine factory, only called by the first caller
            timeout: This caller's own deadline in seconds

        Returns:
            The producer's result, shared by every attached caller

        Raises:
            DeadlineExceeded: If this caller's deadline passes first
            Exception: Whatever the producer raised, re-raised to every waiter
        """
        self.stats_counters.calls += 1
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(producer())
            self._in_flight[key] = task
            self.stats_counters.producers += 1
            task.add_done_callback(lambda done, key=key: self._on_done(key, done))
        else:
            self.stats_counters.coalesced += 1
            dedup_coalesced_total.inc()
            logger.debug("dedup_coalesced", dedup=self.name)

        try:
            if timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as exc:
            raise DeadlineExceeded(f"deadline exceeded waiting on {self.name}") from exc

    def _on_done(self, key: Hashable, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark the exception retrieved when every waiter has already left
        if not task.cancelled():
            task.exception()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "calls": self.stats_counters.calls,
            "producers": self.stats_counters.producers,
            "coalesced": self.stats_counters.coalesced,
            "coalesce_rate": round(self.stats_counters.coalesce_rate, 4),
            "in_flight": self.in_flight,
        }


def _canonical(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, Coordinates):
        return [round(value.lat, 4), round(value.lng, 4)]
    if isinstance(value, float):
        return round(value, 4)
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_canonical(v) for v in value]
        if isinstance(value, (set, frozenset)):
            items.sort(key=repr)
        return items
    return value


def normalize_text(text: str | None) -> str:
    return " ".join((text or "").casefold().split())


def make_dedup_key(
    query_text: str | None,
    location: Coordinates | str | None = None,
    filters: Mapping[str, Any] | None = None,
    **extra: Any,
) -> str:
    """
    Canonical key over every input that affects a result.

    Text is case-folded and whitespace-collapsed, coordinates are rounded to
    four decimals, filters are sorted and enums are keyed by name so that
    ``OpenNowFilter.EXCLUDE`` never collides with a missing flag.
    """
    payload = {
        "q": normalize_text(query_text),
        "loc": _canonical(location) if not isinstance(location, str) else normalize_text(location),
        "filters": _canonical(dict(filters or {})),
        "extra": _canonical(extra),
    }
    raw = json.dumps(payload, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


__all__ = ["RequestDeduplicator", "DedupStats", "make_dedup_key", "normalize_text"]
