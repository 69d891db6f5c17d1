"""
Search orchestration: one admitted, de-duplicated pipeline run per query.

The orchestrator owns no global state. Everything it touches lives on an
injected ``SearchServices`` so that tests can swap any capability for a fake.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from .admission import AdmissionGate
from .assistant.fallback_messages import fallback_payload
from .assistant.narrator import AssistantNarrator, LLMNarrationClient, NarrationContext
from .cache import CacheRegistry, CacheSweeper, make_cache_key, provider_ttl_for
from .capabilities import GeocodeCapability, IntentCapability, PlacesCapability, PlacesFilters
from .dedup import RequestDeduplicator, make_dedup_key, normalize_text
from .errors import (
    CapacityExceeded,
    FailureReason,
    ModelTimeout,
    ProviderTimeout,
    QuotaExceeded,
    SearchError,
    failure_reason_for,
)
from .intent import LLMIntentExtractor, heuristic_intent
from .language import LanguageResolver, ResolvedLanguage, detect_language
from .logging_config import get_logger
from .metrics import intent_fallbacks_total, search_responses_total, stage_timer
from .models import (
    AssistPayload,
    Capabilities,
    Coordinates,
    Granularity,
    Mode,
    ParsedIntent,
    Query,
    ResponseMeta,
    SearchResponse,
    Venue,
    merge_filters,
)
from .pipeline.chips import ChipGenerator, ChipPolicy
from .pipeline.filters import apply_post_filters
from .pipeline.grouping import classify_granularity, group_results
from .pipeline.mode import ModeInputs, classify_mode
from .pipeline.open_now import apply_open_now_filter
from .pipeline.ranking import RankingService, RankingWeights
from .providers.chat_completions import ChatCompletionsClient
from .providers.google_geocoding import GoogleGeocoder
from .providers.google_places import GooglePlacesClient
from .session import SessionContext, SessionStore
from .settings import Settings
from .utils import get_request_id, new_request_id, request_id_ctx

logger = get_logger(__name__)

TOP_NAMES_FOR_NARRATION = 3


@dataclass
class SearchServices:
    """Composition root for one process."""

    settings: Settings
    caches: CacheRegistry
    dedup: RequestDeduplicator
    gate: AdmissionGate
    sessions: SessionStore
    intent: IntentCapability | None
    geocoder: GeocodeCapability
    places: PlacesCapability
    ranking: RankingService
    narrator: AssistantNarrator
    languages: LanguageResolver
    chips: ChipGenerator = field(default_factory=ChipGenerator)
    sweeper: CacheSweeper | None = None
    closeables: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        if self.sweeper is not None:
            await self.sweeper.stop()
        for resource in self.closeables:
            await resource.aclose()


def build_services(
    settings: Settings,
    *,
    provider_transport=None,
    model_transport=None,
    clock=time.monotonic,
) -> SearchServices:
    """Wire the production adapters from ``settings``."""
    caches = CacheRegistry.from_settings(settings, clock=clock)
    chat = ChatCompletionsClient.from_settings(settings, transport=model_transport)
    geocoder = GoogleGeocoder.from_settings(settings, transport=provider_transport)
    places = GooglePlacesClient.from_settings(settings, transport=provider_transport)

    intent: IntentCapability | None = None
    narration: LLMNarrationClient | None = None
    if chat.configured:
        intent = LLMIntentExtractor(chat, settings.INTENT_MODEL)
        narration = LLMNarrationClient(
            chat,
            settings.NARRATION_MODEL,
            max_tokens=settings.NARRATION_MAX_TOKENS,
            temperature=settings.NARRATION_TEMPERATURE,
        )
    else:
        logger.warning("llm_not_configured", fallback="heuristic_intent")

    return SearchServices(
        settings=settings,
        caches=caches,
        dedup=RequestDeduplicator("search"),
        gate=AdmissionGate.from_settings(settings),
        sessions=SessionStore(caches.sessions),
        intent=intent,
        geocoder=geocoder,
        places=places,
        ranking=RankingService(
            RankingWeights.from_string(settings.RANKING_WEIGHTS), limit=settings.RESULT_LIMIT
        ),
        narrator=AssistantNarrator(
            narration,
            timeout=settings.NARRATION_TIMEOUT_SECONDS,
            script_threshold=settings.LANGUAGE_SCRIPT_THRESHOLD,
        ),
        languages=LanguageResolver.from_settings(settings),
        chips=ChipGenerator(ChipPolicy.from_settings(settings)),
        sweeper=CacheSweeper(caches, settings.CACHE_SWEEP_INTERVAL_SECONDS),
        closeables=[chat, geocoder, places],
    )


@dataclass(slots=True)
class _ProviderOutcome:
    venues: tuple[Venue, ...] = ()
    cached: bool = False
    error: FailureReason | None = None


class SearchOrchestrator:
    def __init__(self, services: SearchServices) -> None:
        self.services = services
        self.settings = services.settings

    # -- public ---------------------------------------------------------------

    async def search(self, query: Query, *, skip_narration: bool = False) -> SearchResponse:
        token = None
        if not get_request_id():
            token = request_id_ctx.set(new_request_id())
        started = time.perf_counter()
        try:
            try:
                response = await self.services.gate.execute(
                    lambda: self._search_deduped(query, skip_narration)
                )
            except CapacityExceeded as exc:
                response = self._capacity_response(query, exc, started, skip_narration)
            self._record(response)
            return response
        finally:
            if token is not None:
                request_id_ctx.reset(token)

    async def narrate(self, request_id: str) -> AssistPayload | None:
        """
        Deferred narration for a search run with ``skip_narration``.

        Returns ``None`` when ``request_id`` is unknown or its context expired.
        Concurrent fetches for the same id share one narration call, and the
        result is kept for later fetches. The call is admitted like a search;
        a rejected fetch gets the static fallback, which is not kept.
        """
        caches = self.services.caches
        ctx: NarrationContext | None = caches.assistant.get(request_id)
        if ctx is None:
            return None
        payload_key = ("assist", request_id)
        cached = caches.assistant.get(payload_key)
        if cached is not None:
            return cached

        async def produce() -> AssistPayload:
            with stage_timer("narration"):
                payload = await self.services.narrator.narrate(ctx)
            caches.assistant.set(payload_key, payload)
            return payload

        try:
            return await self.services.gate.execute(
                lambda: self.services.dedup.dedupe(("narrate", request_id), produce)
            )
        except CapacityExceeded as exc:
            logger.warning("narration_rejected", cause=exc.cause, search_id=request_id)
            return fallback_payload(
                ctx.mode,
                ctx.failure_reason,
                ctx.language,
                closed_now_is_derived=ctx.closed_now_is_derived,
            )

    # -- pipeline -------------------------------------------------------------

    async def _search_deduped(self, query: Query, skip_narration: bool) -> SearchResponse:
        filters = query.filters
        key = make_dedup_key(
            query.text,
            query.user_location,
            {
                "open_now": filters.open_now,
                "price_levels": filters.price_levels,
                "min_rating": filters.min_rating,
                "language": filters.language,
                "ui_language": filters.ui_language,
            },
            session_id=query.session_id,
            region=(query.region_code or "").upper(),
            skip_narration=skip_narration,
        )
        return await self.services.dedup.dedupe(("search", key), lambda: self._run(query, skip_narration))

    async def _run(self, query: Query, skip_narration: bool) -> SearchResponse:
        services = self.services
        settings = self.settings
        request_id = new_request_id()
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(search_id=request_id):
            with stage_timer("intent"):
                intent, session = await asyncio.gather(
                    self._extract_intent(query),
                    services.sessions.get(query.session_id),
                )
            intent = merge_filters(intent, query.filters)
            resolved = self._resolve_language(query, intent, session)

            has_location = self._has_location(intent, query)
            needs_clarify = bool(intent.ambiguous_tokens) or (
                intent.requires_location and not has_location
            )

            center = query.user_location
            outcome = _ProviderOutcome()
            if not needs_clarify:
                center, error = await self._locate(intent, query)
                if error is not None:
                    outcome = _ProviderOutcome(error=error)
                else:
                    outcome = await self._search_places(intent, center, resolved.language, query)

            with stage_timer("rank"):
                ranked = self._rank(outcome.venues, intent, center)

            granularity = classify_granularity(intent)
            filtered = apply_post_filters(
                ranked, intent.filters, granularity, settings.CITY_MAX_RADIUS_M
            )
            open_now = apply_open_now_filter(
                filtered, intent.filters.open_now, population=outcome.venues
            )
            venues = open_now.venues
            # closed-now is only derived when provider results were actually filtered
            derived = open_now.derived and outcome.error is None and not needs_clarify
            groups = group_results(venues, granularity, settings.group_radii)

            decision = classify_mode(
                ModeInputs(
                    intent=intent,
                    result_count=len(venues),
                    has_location=has_location,
                    error_reason=outcome.error,
                ),
                settings.RECOVERY_CONFIDENCE_THRESHOLD,
            )
            chips = services.chips.generate(
                decision.mode,
                intent,
                venues,
                resolved.language,
                session_city=session.last_city if session else None,
            )

            narration = NarrationContext(
                mode=decision.mode,
                failure_reason=decision.failure_reason,
                query=query.text,
                language=resolved.language,
                result_count=len(venues),
                top_names=tuple(v.name for v in venues[:TOP_NAMES_FOR_NARRATION]),
                open_now_summary=open_now.summary,
                closed_now_is_derived=derived,
            )
            assist: AssistPayload | None = None
            if skip_narration:
                services.caches.assistant.set(request_id, narration)
            else:
                with stage_timer("narration"):
                    assist = await services.narrator.narrate(narration)

            city = intent.location.city if intent.location else None
            await services.sessions.record_search(
                query.session_id,
                query.text,
                language=query.filters.ui_language,
                city=city,
            )

            meta = ResponseMeta(
                mode=decision.mode,
                failure_reason=decision.failure_reason,
                confidence=intent.confidence,
                language=resolved.language,
                language_source=resolved.source,
                granularity=granularity,
                open_now_summary=open_now.summary,
                capabilities=Capabilities(closed_now_is_derived=derived),
                total_results=len(venues),
                took_ms=int((time.perf_counter() - started) * 1000),
                provider_cached=outcome.cached,
                intent_source=intent.source,
            )
            return SearchResponse(
                request_id=request_id,
                query=query.text,
                results=venues,
                groups=groups,
                chips=chips,
                meta=meta,
                session_id=query.session_id,
                intent=intent,
                assist=assist,
            )

    async def _extract_intent(self, query: Query) -> ParsedIntent:
        settings = self.settings
        capability = self.services.intent
        if capability is None:
            intent_fallbacks_total.labels(cause="disabled").inc()
            return heuristic_intent(query.text)

        timeout = settings.INTENT_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(capability.extract(query.text, None, timeout), timeout)
        except (asyncio.TimeoutError, ModelTimeout):
            cause = "timeout"
        except QuotaExceeded:
            cause = "quota"
        except SearchError as exc:
            logger.info("intent_extraction_failed", error=type(exc).__name__)
            cause = "error"
        intent_fallbacks_total.labels(cause=cause).inc()
        logger.info("intent_fallback", cause=cause)
        return heuristic_intent(query.text)

    def _resolve_language(
        self, query: Query, intent: ParsedIntent, session: SessionContext | None
    ) -> ResolvedLanguage:
        ui_language = query.filters.ui_language or (session.ui_language if session else None)
        detected = intent.language or detect_language(query.text)
        return self.services.languages.resolve(
            ui_language=ui_language,
            base_language=query.filters.language,
            detected_language=detected,
            region_code=query.region_code,
        )

    @staticmethod
    def _has_location(intent: ParsedIntent, query: Query) -> bool:
        if query.user_location is not None:
            return True
        location = intent.location
        if location is None or location.is_empty:
            return False
        # "near me" alone says nothing without device coordinates
        return bool(location.coords or location.geocode_text)

    async def _locate(
        self, intent: ParsedIntent, query: Query
    ) -> tuple[Coordinates | None, FailureReason | None]:
        location = intent.location
        if location is None or location.is_empty:
            return query.user_location, None
        if location.coords is not None:
            return location.coords, None
        if location.near_me and query.user_location is not None:
            return query.user_location, None
        text = location.geocode_text
        if not text:
            return query.user_location, None
        try:
            with stage_timer("geocode"):
                return await self._geocode(text), None
        except SearchError as exc:
            reason = failure_reason_for(exc)
            logger.warning("geocode_failed", reason=reason.value, error=type(exc).__name__)
            return None, reason

    async def _geocode(self, text: str) -> Coordinates:
        cache = self.services.caches.geocode
        key = make_cache_key("geocode", normalize_text(text))
        cached = cache.get(key)
        if cached is not None:
            return cached

        async def produce() -> Coordinates:
            try:
                coords = await asyncio.wait_for(
                    self.services.geocoder.resolve(text), self.settings.GEOCODE_TIMEOUT_SECONDS
                )
            except asyncio.TimeoutError as exc:
                raise ProviderTimeout("geocode timed out") from exc
            cache.set(key, coords)
            return coords

        return await self.services.dedup.dedupe(("geocode", key), produce)

    async def _search_places(
        self,
        intent: ParsedIntent,
        center: Coordinates | None,
        language: str,
        query: Query,
    ) -> _ProviderOutcome:
        settings = self.settings
        location = intent.location
        radius = location.radius_m if location and location.radius_m else settings.SEARCH_RADIUS_M
        filters = PlacesFilters.for_flag(
            intent.filters.open_now,
            price_levels=intent.filters.price_levels,
            min_rating=intent.filters.min_rating,
            language=language,
            radius_m=radius,
            limit=settings.RESULT_LIMIT,
        )
        text = intent.query
        if center is None and location is not None and location.geocode_text:
            text = f"{text} {location.geocode_text}"

        cache = self.services.caches.provider
        key = make_cache_key(
            "places",
            normalize_text(text),
            [round(center.lat, 4), round(center.lng, 4)] if center else None,
            filters.open_now,
            list(filters.price_levels),
            filters.min_rating,
            filters.language,
            filters.radius_m,
            filters.limit,
        )
        cached = cache.get(key)
        if cached is not None:
            return _ProviderOutcome(venues=cached, cached=True)

        async def produce() -> tuple[Venue, ...]:
            try:
                found = await asyncio.wait_for(
                    self.services.places.search(text, center, filters),
                    settings.PROVIDER_TIMEOUT_SECONDS,
                )
            except asyncio.TimeoutError as exc:
                raise ProviderTimeout("places search timed out") from exc
            venues = tuple(found)
            ttl = provider_ttl_for(
                intent,
                not venues,
                query_text=query.text,
                default_ttl=settings.PROVIDER_CACHE_TTL_SECONDS,
                live_ttl=settings.PROVIDER_LIVE_CACHE_TTL_SECONDS,
                empty_ttl=settings.PROVIDER_EMPTY_CACHE_TTL_SECONDS,
            )
            cache.set(key, venues, ttl)
            return venues

        try:
            with stage_timer("places"):
                venues = await self.services.dedup.dedupe(("places", key), produce)
        except SearchError as exc:
            reason = failure_reason_for(exc)
            logger.warning("places_search_failed", reason=reason.value, error=type(exc).__name__)
            return _ProviderOutcome(error=reason)
        return _ProviderOutcome(venues=venues)

    def _rank(
        self,
        venues: tuple[Venue, ...],
        intent: ParsedIntent,
        center: Coordinates | None,
    ) -> list[Venue]:
        if not venues:
            return []
        cache = self.services.caches.ranking
        filters = intent.filters
        key = make_cache_key(
            "rank",
            [venue.id for venue in venues],
            [venue.open_now.value for venue in venues],
            list(intent.categories),
            list(filters.dietary),
            list(filters.price_levels),
            filters.open_now.name,
            [round(center.lat, 4), round(center.lng, 4)] if center else None,
        )
        cached = cache.get(key)
        if cached is not None:
            return list(cached)
        ranked = self.services.ranking.rank(venues, intent, center)
        cache.set(key, tuple(ranked))
        return ranked

    # -- responses ------------------------------------------------------------

    def _capacity_response(
        self, query: Query, exc: CapacityExceeded, started: float, skip_narration: bool = False
    ) -> SearchResponse:
        """A well-formed RECOVERY answer built without any capability call."""
        intent = merge_filters(heuristic_intent(query.text), query.filters)
        resolved = self._resolve_language(query, intent, None)
        reason = FailureReason.CAPACITY_EXCEEDED
        request_id = new_request_id()
        logger.warning("search_rejected", cause=exc.cause, search_id=request_id)

        assist: AssistPayload | None = None
        if skip_narration:
            self.services.caches.assistant.set(
                request_id,
                NarrationContext(
                    mode=Mode.RECOVERY,
                    failure_reason=reason,
                    query=query.text,
                    language=resolved.language,
                ),
            )
        else:
            assist = fallback_payload(Mode.RECOVERY, reason, resolved.language)
        return SearchResponse(
            request_id=request_id,
            query=query.text,
            results=(),
            groups=(),
            chips=self.services.chips.generate(Mode.RECOVERY, intent, (), resolved.language),
            meta=ResponseMeta(
                mode=Mode.RECOVERY,
                failure_reason=reason,
                confidence=intent.confidence,
                language=resolved.language,
                language_source=resolved.source,
                granularity=Granularity.CITY,
                took_ms=int((time.perf_counter() - started) * 1000),
                intent_source=intent.source,
            ),
            session_id=query.session_id,
            intent=None,
            assist=assist,
        )

    def _record(self, response: SearchResponse) -> None:
        meta = response.meta
        search_responses_total.labels(
            mode=meta.mode.value, failure_reason=meta.failure_reason.value
        ).inc()
        logger.info(
            "search_completed",
            search_id=response.request_id,
            mode=meta.mode.value,
            failure_reason=meta.failure_reason.value,
            results=meta.total_results,
            language=meta.language,
            took_ms=meta.took_ms,
        )


__all__ = ["SearchServices", "SearchOrchestrator", "build_services"]
