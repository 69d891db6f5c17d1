"""TTL-bounded session context backed by the ``sessions`` cache."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace

from .cache import TTLCache

MAX_RECENT_QUERIES = 5


@dataclass(slots=True, frozen=True)
class SessionContext:
    session_id: str
    ui_language: str | None = None
    last_city: str | None = None
    recent_queries: tuple[str, ...] = ()

    def remember(
        self,
        query: str,
        *,
        language: str | None = None,
        city: str | None = None,
    ) -> SessionContext:
        recent = (*[q for q in self.recent_queries if q != query], query)[-MAX_RECENT_QUERIES:]
        return replace(
            self,
            recent_queries=recent,
            ui_language=language or self.ui_language,
            last_city=city or self.last_city,
        )


class SessionStore:
    """
    In-process session persistence.

    Lookups are async so the orchestrator can run them alongside intent
    extraction; a remote store can drop in behind the same two methods.
    """

    def __init__(self, cache: TTLCache[SessionContext]) -> None:
        self._cache = cache

    async def get(self, session_id: str | None) -> SessionContext | None:
        if not session_id:
            return None
        await asyncio.sleep(0)
        return self._cache.get(session_id)

    async def save(self, context: SessionContext) -> None:
        self._cache.set(context.session_id, context)

    async def record_search(
        self,
        session_id: str | None,
        query: str,
        *,
        language: str | None = None,
        city: str | None = None,
    ) -> SessionContext | None:
        if not session_id:
            return None
        current = self._cache.get(session_id) or SessionContext(session_id=session_id)
        updated = current.remember(query, language=language, city=city)
        await self.save(updated)
        return updated


__all__ = ["SessionContext", "SessionStore", "MAX_RECENT_QUERIES"]
