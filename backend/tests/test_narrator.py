"""Narration language enforcement and the static fallback table."""

import asyncio
import json

import httpx
import pytest
from backend.tests.fakes import FakeNarration
from backend.venue_search.assistant.fallback_messages import (
    FALLBACK_MESSAGES,
    fallback_keys,
    fallback_payload,
)
from backend.venue_search.assistant.narrator import (
    AssistantNarrator,
    LLMNarrationClient,
    NarrationContext,
)
from backend.venue_search.capabilities import AssistantOutput
from backend.venue_search.errors import FailureReason, ModelError, ProviderError, QuotaExceeded
from backend.venue_search.models import Mode, OpenNowSummary
from backend.venue_search.providers.chat_completions import ChatCompletionsClient


def _ctx(mode=Mode.NORMAL, reason=FailureReason.NONE, language="en", **kwargs):
    return NarrationContext(mode=mode, failure_reason=reason, query="pizza", language=language, **kwargs)


def _narrate(capability, ctx, timeout=0.5):
    return asyncio.run(AssistantNarrator(capability, timeout=timeout).narrate(ctx))


class SlowNarration:
    def __init__(self):
        self.calls = 0

    async def complete(self, prompt_context, output_schema, timeout):  # noqa: ARG002
        self.calls += 1
        await asyncio.sleep(1.0)
        return output_schema(message="late")


class TestAssistantNarrator:
    def test_matching_language_passes_through(self):
        payload = _narrate(FakeNarration(), _ctx())
        assert payload.source == "llm"
        assert payload.message == "Found some good pizza nearby."
        assert payload.question is None

    def test_wrong_script_replaced_with_fallback(self):
        capability = FakeNarration(message="I found no pizza places nearby.")
        ctx = _ctx(Mode.RECOVERY, FailureReason.NO_RESULTS, "he")
        payload = _narrate(capability, ctx)
        assert payload.source == "fallback"
        assert payload.language == "he"
        assert payload.message == FALLBACK_MESSAGES["he"]["no_results"]
        assert len(capability.calls) == 1

    def test_question_in_wrong_script_also_rejected(self):
        capability = FakeNarration(message="יש כמה אפשרויות", question="Which area?")
        payload = _narrate(capability, _ctx(Mode.CLARIFY, FailureReason.MISSING_LOCATION, "he"))
        assert payload.source == "fallback"
        assert payload.question == FALLBACK_MESSAGES["he"]["need_location_q"]

    def test_timeout_falls_back_without_retry(self):
        capability = SlowNarration()
        payload = _narrate(capability, _ctx(language="ru"), timeout=0.05)
        assert payload.source == "fallback"
        assert payload.message == FALLBACK_MESSAGES["ru"]["refine"]
        assert capability.calls == 1

    @pytest.mark.parametrize(
        "error",
        [QuotaExceeded("quota"), ModelError("bad"), ProviderError("down"), ValueError("nope")],
    )
    def test_capability_errors_fall_back(self, error):
        payload = _narrate(FakeNarration(error=error), _ctx(Mode.RECOVERY, FailureReason.TIMEOUT))
        assert payload.source == "fallback"
        assert payload.message == FALLBACK_MESSAGES["en"]["failed"]

    def test_empty_message_falls_back(self):
        payload = _narrate(FakeNarration(message="   "), _ctx())
        assert payload.source == "fallback"

    def test_disabled_narrator(self):
        payload = _narrate(None, _ctx(Mode.CLARIFY, FailureReason.AMBIGUOUS_QUERY, "ar"))
        assert payload.message == FALLBACK_MESSAGES["ar"]["ambiguous"]
        assert payload.question == FALLBACK_MESSAGES["ar"]["ambiguous_q"]

    def test_derived_closed_fallback(self):
        capability = FakeNarration(error=ModelError("x"))
        payload = _narrate(capability, _ctx(closed_now_is_derived=True))
        assert payload.message == FALLBACK_MESSAGES["en"]["closed_derived"]


class TestFallbackTable:
    def test_every_language_has_every_key(self):
        keys = set(FALLBACK_MESSAGES["en"])
        for language, table in FALLBACK_MESSAGES.items():
            assert set(table) == keys, language

    def test_unknown_language_uses_english(self):
        payload = fallback_payload(Mode.NORMAL, FailureReason.NONE, "de")
        assert payload.language == "en"
        assert payload.message == FALLBACK_MESSAGES["en"]["refine"]

    def test_clarify_always_asks(self):
        for reason in (FailureReason.MISSING_LOCATION, FailureReason.AMBIGUOUS_QUERY):
            assert fallback_payload(Mode.CLARIFY, reason, "fr").question

    @pytest.mark.parametrize(
        "reason, key",
        [
            (FailureReason.QUOTA_EXCEEDED, "busy"),
            (FailureReason.CAPACITY_EXCEEDED, "busy"),
            (FailureReason.GEOCODING_FAILED, "geocoding_failed"),
            (FailureReason.LOW_CONFIDENCE, "low_confidence"),
            (FailureReason.PROVIDER_ERROR, "failed"),
        ],
    )
    def test_recovery_keys(self, reason, key):
        assert fallback_keys(Mode.RECOVERY, reason) == (key, None)

    def test_unknown_mode_rejected(self):
        with pytest.raises(TypeError):
            fallback_keys("SOMETHING", FailureReason.NONE)  # type: ignore[arg-type]


def test_context_prompt_is_bounded():
    ctx = _ctx(
        result_count=5,
        top_names=("a", "b", "c", "d"),
        open_now_summary=OpenNowSummary(open=2, closed=1, unknown=2, total=5),
    )
    prompt = ctx.to_prompt()
    assert prompt["top_results"] == ["a", "b", "c"]
    assert prompt["open_now_summary"]["total"] == 5
    assert prompt["mode"] == "NORMAL"


class TestLLMNarrationClient:
    def _complete(self, handler, language="he"):
        async def run():
            client = ChatCompletionsClient("test-key", transport=httpx.MockTransport(handler))
            try:
                narration = LLMNarrationClient(client, "gpt-4o-mini")
                return await narration.complete(
                    _ctx(language=language).to_prompt(), AssistantOutput, 1.0
                )
            finally:
                await client.aclose()

        return asyncio.run(run())

    def test_language_is_named_in_prompt(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            content = json.dumps({"message": "יש כמה אפשרויות", "question": None})
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

        output = self._complete(handler)
        assert output.message == "יש כמה אפשרויות"
        user_block = seen[0]["messages"][1]["content"]
        assert "Hebrew only" in user_block
        assert seen[0]["temperature"] == 0.3

    def test_invalid_output_is_model_error(self):
        content = json.dumps({"message": "x" * 1000})

        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

        with pytest.raises(ModelError):
            self._complete(handler)
