"""End-to-end pipeline behavior with every external capability faked."""

import asyncio

import httpx
from backend.tests.fakes import (
    TEL_AVIV,
    FakeGeocoder,
    FakeIntent,
    FakeNarration,
    FakePlaces,
    make_intent,
    make_services,
    make_settings,
    make_venue,
)
from backend.venue_search.assistant.fallback_messages import FALLBACK_MESSAGES
from backend.venue_search.assistant.narrator import AssistantNarrator
from backend.venue_search.errors import (
    FailureReason,
    GeocodingFailed,
    ModelError,
    ProviderError,
    QuotaExceeded,
)
from backend.venue_search.models import (
    ChipKind,
    Granularity,
    IntentFilters,
    LocationRef,
    Mode,
    OpenNowFilter,
    OpenState,
    Query,
    RequestFilters,
)
from backend.venue_search.orchestrator import SearchOrchestrator, build_services
from backend.venue_search.pipeline.grouping import ALL


def _search(services, query, **kwargs):
    return asyncio.run(SearchOrchestrator(services).search(query, **kwargs))


def _mixed_venues():
    return [
        make_venue("open-1", open_now=OpenState.OPEN),
        make_venue("open-2", open_now=OpenState.OPEN),
        make_venue("closed-1", open_now=OpenState.CLOSED),
        make_venue("closed-2", open_now=OpenState.CLOSED),
        make_venue("unknown-1", open_now=OpenState.UNKNOWN),
    ]


class TestNormalSearch:
    def test_city_search(self, services):
        response = _search(services, Query(text="pizza in Tel Aviv"))

        assert response.meta.mode is Mode.NORMAL
        assert response.meta.failure_reason is FailureReason.NONE
        assert response.meta.granularity is Granularity.CITY
        assert response.meta.total_results == 6
        assert len(response.groups) == 1 and response.groups[0].name == ALL
        assert response.assist.source == "llm"
        assert response.assist.mode is Mode.NORMAL
        assert response.chips.mode is Mode.NORMAL
        assert response.meta.language == "en"
        assert response.meta.language_source == "detected"

        assert services.geocoder.calls == ["Tel Aviv"]
        text, center, filters = services.places.calls[0]
        assert text == "pizza"
        assert center == TEL_AVIV
        assert filters.open_now is None
        assert filters.language == "en"

    def test_explicit_filters_reach_the_provider(self, services):
        query = Query(text="pizza", filters=RequestFilters(price_levels=(1,), min_rating=4.0))
        _search(services, query)
        filters = services.places.calls[0][2]
        assert filters.price_levels == (1,)
        assert filters.min_rating == 4.0

    def test_near_me_uses_device_location(self):
        intent = make_intent(location=LocationRef(near_me=True))
        services = make_services(intent=FakeIntent(intent))
        response = _search(services, Query(text="pizza near me", user_location=TEL_AVIV))

        assert services.geocoder.calls == []
        assert services.places.calls[0][1] == TEL_AVIV
        assert response.meta.granularity is Granularity.AREA
        assert len(response.groups) == 2

    def test_results_carry_distance(self, services):
        response = _search(services, Query(text="pizza in Tel Aviv"))
        assert all(v.distance_m is not None for v in response.results)


class TestOpenNow:
    def test_exclude_is_derived_locally(self):
        places = FakePlaces(_mixed_venues())
        services = make_services(places=places)
        query = Query(text="pizza", filters=RequestFilters(open_now=OpenNowFilter.EXCLUDE))
        response = _search(services, query)

        assert places.calls[0][2].open_now is None
        assert {v.id for v in response.results} == {"closed-1", "closed-2"}
        assert response.meta.capabilities.closed_now_is_derived is True
        summary = response.meta.open_now_summary
        assert (summary.open, summary.closed, summary.unknown, summary.total) == (2, 2, 1, 5)

    def test_require_is_delegated_upstream(self):
        places = FakePlaces([])
        services = make_services(places=places)
        query = Query(text="pizza", filters=RequestFilters(open_now=OpenNowFilter.REQUIRE))
        response = _search(services, query)

        assert places.calls[0][2].open_now is True
        assert response.meta.mode is Mode.RECOVERY
        assert response.meta.failure_reason is FailureReason.NO_RESULTS
        assert response.chips.chips[0].id == "show_closed"
        assert response.meta.capabilities.closed_now_is_derived is False

    def test_unset_keeps_unknown_hours(self):
        services = make_services(places=FakePlaces(_mixed_venues()))
        response = _search(services, Query(text="pizza"))
        assert response.meta.total_results == 5
        assert response.meta.capabilities.closed_now_is_derived is False

    def test_exclude_not_derived_without_provider_results(self):
        query = Query(text="pizza", filters=RequestFilters(open_now=OpenNowFilter.EXCLUDE))

        clarify = make_services(intent=FakeIntent(make_intent(location=None)))
        response = _search(clarify, query)
        assert response.meta.mode is Mode.CLARIFY
        assert response.meta.capabilities.closed_now_is_derived is False

        failed = make_services(places=FakePlaces(error=ProviderError("500")))
        response = _search(failed, query)
        assert response.meta.failure_reason is FailureReason.PROVIDER_ERROR
        assert response.meta.capabilities.closed_now_is_derived is False


class TestRecovery:
    def test_hebrew_ui_gets_hebrew_fallback(self):
        services = make_services(places=FakePlaces([]), narration=FakeNarration("No pizza found."))
        query = Query(text="pizza", filters=RequestFilters(ui_language="he"))
        response = _search(services, query)

        assert response.meta.mode is Mode.RECOVERY
        assert response.meta.language == "he"
        assert response.meta.language_source == "ui"
        assert response.assist.source == "fallback"
        assert response.assist.message == FALLBACK_MESSAGES["he"]["no_results"]
        assert all(chip.kind is ChipKind.RECOVERY for chip in response.chips)

    def test_geocoding_failure(self):
        services = make_services(geocoder=FakeGeocoder(error=GeocodingFailed("nowhere")))
        response = _search(services, Query(text="pizza in Atlantis"))
        assert response.meta.mode is Mode.RECOVERY
        assert response.meta.failure_reason is FailureReason.GEOCODING_FAILED
        assert services.places.calls == []

    def test_provider_timeout(self):
        settings = make_settings(PROVIDER_TIMEOUT_SECONDS=0.05)
        services = make_services(settings=settings, places=FakePlaces(delay=1.0))
        response = _search(services, Query(text="pizza"))
        assert response.meta.failure_reason is FailureReason.TIMEOUT
        assert response.results == ()

    def test_geocode_timeout(self):
        settings = make_settings(GEOCODE_TIMEOUT_SECONDS=0.05)
        services = make_services(settings=settings, geocoder=FakeGeocoder(delay=1.0))
        response = _search(services, Query(text="pizza"))
        assert response.meta.failure_reason is FailureReason.TIMEOUT

    def test_quota(self):
        services = make_services(places=FakePlaces(error=QuotaExceeded("quota")))
        response = _search(services, Query(text="pizza"))
        assert response.meta.failure_reason is FailureReason.QUOTA_EXCEEDED

    def test_provider_error(self):
        services = make_services(places=FakePlaces(error=ProviderError("500")))
        response = _search(services, Query(text="pizza"))
        assert response.meta.failure_reason is FailureReason.PROVIDER_ERROR

    def test_provider_errors_are_not_cached(self):
        places = FakePlaces(error=ProviderError("500"))
        services = make_services(places=places)
        _search(services, Query(text="pizza"))
        places.error = None
        response = _search(services, Query(text="pizza"))
        assert response.meta.mode is Mode.NORMAL
        assert len(places.calls) == 2

    def test_capacity_exceeded(self):
        settings = make_settings(ADMISSION_MAX_CONCURRENT=1, ADMISSION_MAX_QUEUE=0)
        services = make_services(settings=settings, places=FakePlaces(delay=0.2))
        orchestrator = SearchOrchestrator(services)

        async def run():
            first = asyncio.create_task(orchestrator.search(Query(text="pizza")))
            await asyncio.sleep(0.05)
            rejected = await orchestrator.search(Query(text="sushi"))
            return await first, rejected

        first, rejected = asyncio.run(run())

        assert first.meta.mode is Mode.NORMAL
        assert rejected.meta.mode is Mode.RECOVERY
        assert rejected.meta.failure_reason is FailureReason.CAPACITY_EXCEEDED
        assert rejected.assist.message == FALLBACK_MESSAGES["en"]["busy"]
        assert rejected.intent is None
        assert len(services.places.calls) == 1

    def test_capacity_exceeded_with_deferred_narration(self):
        settings = make_settings(ADMISSION_MAX_CONCURRENT=1, ADMISSION_MAX_QUEUE=0)
        services = make_services(settings=settings, places=FakePlaces(delay=0.2))
        services.narrator = AssistantNarrator(None)
        orchestrator = SearchOrchestrator(services)

        async def run():
            first = asyncio.create_task(orchestrator.search(Query(text="pizza")))
            await asyncio.sleep(0.05)
            rejected = await orchestrator.search(Query(text="sushi"), skip_narration=True)
            await first
            return rejected, await orchestrator.narrate(rejected.request_id)

        rejected, assist = asyncio.run(run())

        assert rejected.meta.failure_reason is FailureReason.CAPACITY_EXCEEDED
        assert rejected.assist is None
        assert assist.mode is Mode.RECOVERY
        assert assist.message == FALLBACK_MESSAGES["en"]["busy"]

    def test_malformed_places_payload(self):
        def handler(request):
            place = {"id": "p1", "location": {"latitude": None, "longitude": 34.78}}
            return httpx.Response(200, json={"places": [place]})

        services = build_services(
            make_settings(GOOGLE_API_KEY="places-key"),
            provider_transport=httpx.MockTransport(handler),
        )

        async def run():
            try:
                return await SearchOrchestrator(services).search(
                    Query(text="pizza", user_location=TEL_AVIV)
                )
            finally:
                await services.aclose()

        response = asyncio.run(run())
        assert response.meta.mode is Mode.RECOVERY
        assert response.meta.failure_reason is FailureReason.PROVIDER_ERROR
        assert response.results == ()


class TestIntentFallback:
    def test_model_error_uses_heuristic(self):
        services = make_services(intent=FakeIntent(error=ModelError("bad json")))
        response = _search(services, Query(text="pizza open now in Tel Aviv"))

        assert response.meta.intent_source == "heuristic"
        assert response.intent.filters.open_now is OpenNowFilter.REQUIRE
        assert response.meta.mode is Mode.RECOVERY
        assert response.meta.failure_reason is FailureReason.LOW_CONFIDENCE
        assert services.places.calls[0][2].open_now is True

    def test_intent_timeout_uses_heuristic(self):
        settings = make_settings(INTENT_TIMEOUT_SECONDS=0.05)
        services = make_services(settings=settings, intent=FakeIntent(delay=1.0))
        response = _search(services, Query(text="pizza in Tel Aviv"))
        assert response.meta.intent_source == "heuristic"

    def test_no_model_configured(self, services):
        services.intent = None
        response = _search(services, Query(text="pizza in Haifa"))
        assert response.meta.intent_source == "heuristic"
        assert services.geocoder.calls == ["Haifa"]


class TestClarify:
    def test_missing_location_skips_providers(self):
        services = make_services(intent=FakeIntent(make_intent(location=None)))
        services.narrator = AssistantNarrator(None)
        response = _search(services, Query(text="pizza"))

        assert response.meta.mode is Mode.CLARIFY
        assert response.meta.failure_reason is FailureReason.MISSING_LOCATION
        assert services.geocoder.calls == []
        assert services.places.calls == []
        assert response.assist.question == FALLBACK_MESSAGES["en"]["need_location_q"]
        assert all(chip.kind is ChipKind.CLARIFY for chip in response.chips)

    def test_near_me_without_coordinates(self):
        intent = make_intent(location=LocationRef(near_me=True))
        services = make_services(intent=FakeIntent(intent))
        response = _search(services, Query(text="pizza near me"))
        assert response.meta.failure_reason is FailureReason.MISSING_LOCATION

    def test_ambiguous_tokens(self):
        intent = make_intent(ambiguous_tokens=("Paris",), filters=IntentFilters())
        services = make_services(intent=FakeIntent(intent))
        response = _search(services, Query(text="pizza Paris"))
        assert response.meta.mode is Mode.CLARIFY
        assert response.meta.failure_reason is FailureReason.AMBIGUOUS_QUERY
        assert response.chips.chips[0].value == "Paris"


class TestDeferredNarration:
    def test_skip_then_fetch(self):
        narration = FakeNarration()
        services = make_services(narration=narration)
        orchestrator = SearchOrchestrator(services)

        async def run():
            response = await orchestrator.search(Query(text="pizza"), skip_narration=True)
            first, second = await asyncio.gather(
                orchestrator.narrate(response.request_id),
                orchestrator.narrate(response.request_id),
            )
            third = await orchestrator.narrate(response.request_id)
            return response, first, second, third

        response, first, second, third = asyncio.run(run())

        assert response.assist is None
        assert first == second == third
        assert first.message == "Found some good pizza nearby."
        assert len(narration.calls) == 1

    def test_fetch_is_admitted_like_a_search(self):
        settings = make_settings(ADMISSION_MAX_CONCURRENT=1, ADMISSION_MAX_QUEUE=0)
        narration = FakeNarration()
        places = FakePlaces()
        services = make_services(settings=settings, places=places, narration=narration)
        orchestrator = SearchOrchestrator(services)

        async def run():
            response = await orchestrator.search(Query(text="pizza"), skip_narration=True)
            services.caches.provider.clear()
            places.delay = 0.2
            busy = asyncio.create_task(
                orchestrator.search(Query(text="sushi"), skip_narration=True)
            )
            await asyncio.sleep(0.05)
            rejected = await orchestrator.narrate(response.request_id)
            calls_while_busy = len(narration.calls)
            await busy
            admitted = await orchestrator.narrate(response.request_id)
            return rejected, calls_while_busy, admitted

        rejected, calls_while_busy, admitted = asyncio.run(run())

        assert calls_while_busy == 0
        assert rejected.source == "fallback"
        assert rejected.message == FALLBACK_MESSAGES["en"]["refine"]
        assert admitted.source == "llm"
        assert len(narration.calls) == 1

    def test_unknown_request_id(self, orchestrator):
        assert asyncio.run(orchestrator.narrate("missing")) is None


class TestLanguage:
    def test_scriptless_query_uses_region(self, services):
        services.intent = None
        response = _search(services, Query(text="123 🍕", region_code="IL"))
        assert response.meta.language == "he"
        assert response.meta.language_source == "region"

    def test_scriptless_query_without_region_uses_default(self):
        services = make_services(intent=FakeIntent(make_intent(language=None)))
        response = _search(services, Query(text="123"))
        assert response.meta.language == "en"
        assert response.meta.language_source == "default"


class TestSharedWork:
    def test_identical_concurrent_searches_share_one_run(self):
        places = FakePlaces(delay=0.05)
        services = make_services(places=places)
        orchestrator = SearchOrchestrator(services)

        async def run():
            return await asyncio.gather(
                orchestrator.search(Query(text="pizza in Tel Aviv")),
                orchestrator.search(Query(text="  Pizza in tel aviv ")),
            )

        first, second = asyncio.run(run())
        assert len(places.calls) == 1
        assert first.request_id == second.request_id

    def test_provider_cache_on_repeat(self, services):
        orchestrator = SearchOrchestrator(services)

        async def run():
            await orchestrator.search(Query(text="pizza"))
            return await orchestrator.search(Query(text="pizza", session_id="other"))

        response = asyncio.run(run())
        assert response.meta.provider_cached is True
        assert len(services.places.calls) == 1
        assert len(services.geocoder.calls) == 1


class TestSessions:
    def test_ui_language_persists(self, services):
        orchestrator = SearchOrchestrator(services)

        async def run():
            await orchestrator.search(
                Query(text="pizza", session_id="s1", filters=RequestFilters(ui_language="ru"))
            )
            return await orchestrator.search(Query(text="sushi", session_id="s1"))

        response = asyncio.run(run())
        assert response.meta.language == "ru"
        assert response.meta.language_source == "ui"
        assert response.assist.message == FALLBACK_MESSAGES["ru"]["refine"]

        session = services.caches.sessions.get("s1")
        assert session.last_city == "Tel Aviv"
        assert session.recent_queries == ("pizza", "sushi")


def test_build_services_without_keys():
    services = build_services(make_settings())
    assert services.intent is None
    assert len(services.closeables) == 3
    asyncio.run(services.aclose())
