from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from textwrap import dedent
from typing import Any

from pydantic import ValidationError

from ..capabilities import AssistantOutput, NarrationCapability
from ..errors import FailureReason, ModelError, ModelTimeout, QuotaExceeded, SearchError
from ..language import matches_language
from ..logging_config import get_logger
from ..metrics import narration_fallbacks_total
from ..models import AssistPayload, Mode, OpenNowSummary
from ..providers.chat_completions import ChatCompletionsClient
from .fallback_messages import fallback_payload

logger = get_logger(__name__)

LANGUAGE_NAMES = {
    "en": "English",
    "he": "Hebrew",
    "ru": "Russian",
    "ar": "Arabic",
    "fr": "French",
    "es": "Spanish",
}


@dataclass(slots=True, frozen=True)
class NarrationContext:
    """Everything the narrator may say something about; nothing else reaches the model."""

    mode: Mode
    failure_reason: FailureReason
    query: str
    language: str
    result_count: int = 0
    top_names: tuple[str, ...] = ()
    open_now_summary: OpenNowSummary | None = None
    closed_now_is_derived: bool = False

    def to_prompt(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mode": self.mode.value,
            "failure_reason": self.failure_reason.value,
            "query": self.query,
            "language": self.language,
            "result_count": self.result_count,
            "top_results": list(self.top_names[:3]),
            "closed_now_is_derived": self.closed_now_is_derived,
        }
        if self.open_now_summary is not None:
            summary = self.open_now_summary
            payload["open_now_summary"] = {
                "open": summary.open,
                "closed": summary.closed,
                "unknown": summary.unknown,
                "total": summary.total,
            }
        return payload


class AssistantNarrator:
    """
    One narration call per response, checked against the response language.

    Output written in the wrong script, an empty message, a timeout or any
    other narration error is replaced wholesale from the static fallback
    table. The model is never asked twice.
    """

    def __init__(
        self,
        capability: NarrationCapability | None,
        *,
        timeout: float = 4.0,
        script_threshold: float = 0.5,
    ) -> None:
        self._capability = capability
        self.timeout = timeout
        self.script_threshold = script_threshold

    async def narrate(self, ctx: NarrationContext) -> AssistPayload:
        if self._capability is None:
            return self._fallback(ctx, "disabled")

        try:
            output = await asyncio.wait_for(
                self._capability.complete(ctx.to_prompt(), AssistantOutput, self.timeout),
                self.timeout,
            )
        except (asyncio.TimeoutError, ModelTimeout):
            return self._fallback(ctx, "timeout")
        except QuotaExceeded:
            return self._fallback(ctx, "quota")
        except (SearchError, ValidationError, ValueError) as exc:
            logger.info("narration_failed", error=type(exc).__name__)
            return self._fallback(ctx, "error")

        message = (output.message or "").strip()
        question = (output.question or "").strip() or None
        if not message:
            return self._fallback(ctx, "empty")
        if not self._in_language(message, ctx.language):
            return self._fallback(ctx, "language_mismatch")
        if question is not None and not self._in_language(question, ctx.language):
            return self._fallback(ctx, "language_mismatch")

        return AssistPayload(
            message=message,
            question=question,
            mode=ctx.mode,
            language=ctx.language,
            source="llm",
        )

    def _in_language(self, text: str, language: str) -> bool:
        return matches_language(text, language, self.script_threshold)

    def _fallback(self, ctx: NarrationContext, cause: str) -> AssistPayload:
        narration_fallbacks_total.labels(cause=cause).inc()
        logger.info(
            "narration_fallback",
            cause=cause,
            mode=ctx.mode.value,
            language=ctx.language,
        )
        return fallback_payload(
            ctx.mode,
            ctx.failure_reason,
            ctx.language,
            closed_now_is_derived=ctx.closed_now_is_derived,
        )


NARRATION_SYSTEM_PROMPT = (
    "You are a concise venue-search assistant. Write one or two short sentences about the "
    "search outcome described in the JSON context. Never invent venues, opening hours or facts "
    "that are not in the context."
)


class LLMNarrationClient:
    """Narration over an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        client: ChatCompletionsClient,
        model: str,
        *,
        max_tokens: int = 160,
        temperature: float = 0.3,
    ) -> None:
        self._client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def complete(
        self,
        prompt_context: dict[str, Any],
        output_schema: type[AssistantOutput],
        timeout: float,
    ) -> AssistantOutput:
        language = prompt_context.get("language") or "en"
        language_name = LANGUAGE_NAMES.get(language, language)
        user_block = dedent(
            f"""
            Search outcome (JSON):
            {json.dumps(prompt_context, ensure_ascii=False)}

            Respond with JSON only: {{"message": "...", "question": "..." or null}}.
            Write both fields in {language_name} only, whatever language the query used.
            Ask a question only when mode is CLARIFY. When closed_now_is_derived is true,
            say that the closed places were worked out from their opening hours.
            """
        ).strip()
        data = await self._client.complete_json(
            model=self.model,
            messages=[
                {"role": "system", "content": NARRATION_SYSTEM_PROMPT},
                {"role": "user", "content": user_block},
            ],
            timeout=timeout,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        try:
            return output_schema.model_validate(data)
        except ValidationError as exc:
            raise ModelError("Invalid narration format") from exc


__all__ = ["NarrationContext", "AssistantNarrator", "LLMNarrationClient", "LANGUAGE_NAMES"]
