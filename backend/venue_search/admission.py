"""Admission control: bounded concurrency with a bounded, time-limited queue."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .errors import CapacityExceeded
from .logging_config import get_logger
from .metrics import admission_rejected_total, track_admission_metrics

logger = get_logger(__name__)

T = TypeVar("T")


class AdmissionGate:
    """
    At most ``max_concurrent`` tasks run; at most ``max_queue`` callers wait.

    A caller arriving when both are full is rejected immediately. A queued
    caller that does not get a slot within ``queue_timeout`` seconds is
    rejected with cause ``queue_timeout``. Rejection is always
    ``CapacityExceeded``; it never surfaces as a provider error.
    """

    def __init__(self, max_concurrent: int, max_queue: int, queue_timeout: float) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if max_queue < 0:
            raise ValueError("max_queue must not be negative")
        self.max_concurrent = max_concurrent
        self.max_queue = max_queue
        self.queue_timeout = queue_timeout
        self._slots = asyncio.Semaphore(max_concurrent)
        self._active = 0
        self._waiting = 0
        self._admitted = 0
        self._rejected = 0
        self._timed_out = 0

    @classmethod
    def from_settings(cls, settings) -> AdmissionGate:
        return cls(
            max_concurrent=settings.ADMISSION_MAX_CONCURRENT,
            max_queue=settings.ADMISSION_MAX_QUEUE,
            queue_timeout=settings.ADMISSION_QUEUE_TIMEOUT_SECONDS,
        )

    async def execute(self, task_factory: Callable[[], Awaitable[T]]) -> T:
        await self._acquire()
        try:
            return await task_factory()
        finally:
            self._release()

    async def _acquire(self) -> None:
        # Fast path: a free slot and nobody queued ahead of us
        if self._active < self.max_concurrent and self._waiting == 0:
            await self._slots.acquire()
            self._admit()
            return

        if self._waiting >= self.max_queue:
            self._rejected += 1
            admission_rejected_total.labels(cause="queue_full").inc()
            logger.warning(
                "admission_rejected",
                cause="queue_full",
                active=self._active,
                waiting=self._waiting,
            )
            raise CapacityExceeded("queue_full")

        self._waiting += 1
        track_admission_metrics(self.stats())
        try:
            await asyncio.wait_for(self._slots.acquire(), self.queue_timeout)
        except asyncio.TimeoutError:
            self._timed_out += 1
            admission_rejected_total.labels(cause="queue_timeout").inc()
            logger.warning("admission_rejected", cause="queue_timeout", waited=self.queue_timeout)
            raise CapacityExceeded("queue_timeout") from None
        finally:
            self._waiting -= 1
        self._admit()

    def _admit(self) -> None:
        self._active += 1
        self._admitted += 1
        track_admission_metrics(self.stats())

    def _release(self) -> None:
        self._active -= 1
        self._slots.release()
        track_admission_metrics(self.stats())

    @property
    def active(self) -> int:
        return self._active

    @property
    def waiting(self) -> int:
        return self._waiting

    def stats(self) -> dict[str, Any]:
        return {
            "active": self._active,
            "waiting": self._waiting,
            "max_concurrent": self.max_concurrent,
            "max_queue": self.max_queue,
            "utilization": round(self._active / self.max_concurrent, 4),
            "admitted": self._admitted,
            "rejected": self._rejected,
            "timed_out": self._timed_out,
        }


__all__ = ["AdmissionGate"]
