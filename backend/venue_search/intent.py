from __future__ import annotations

import asyncio
import json
import re
from hashlib import sha256

from pydantic import ValidationError

from .errors import ModelError, ModelTimeout
from .json_utils import string_list
from .language import detect_language, normalize_language
from .logging_config import get_logger
from .models import (
    Granularity,
    IntentFilters,
    LocationRef,
    OpenNowFilter,
    ParsedIntent,
)
from .providers.chat_completions import ChatCompletionsClient
from .schemas import IntentPayload
from .session import SessionContext

logger = get_logger(__name__)

HEURISTIC_CONFIDENCE = 0.4


def _prompt_fingerprint(prompt: str) -> str:
    return sha256(prompt.encode("utf-8")).hexdigest()[:10]


SYSTEM_PROMPT = (
    "You extract structured venue-search intent from a user query in any language. "
    "Return JSON only, no prose, with keys: query, categories, location, filters, language, "
    "confidence, granularity, ambiguous_tokens, requires_location."
)

SCHEMA_GUIDE = (
    "query: the food or venue type in the user's words. categories: normalized English terms "
    "(pizza, sushi, cafe, bar, vegan...). location: {text, city, street, landmark, near_me, radius_m} "
    "or null. filters: {open_now: 'open' | 'closed' | null, price_levels: [0-4], min_rating, "
    "dietary: [...], delivery: bool}. open_now is null unless the query explicitly asks about "
    "opening hours. language: ISO 639-1 code of the query. confidence: 0-1. granularity: CITY | "
    "STREET | LANDMARK | AREA | null. ambiguous_tokens: tokens that could be either a place or a "
    "constraint. requires_location: false only for queries that make sense anywhere."
)

FEW_SHOT_EXAMPLES = [
    (
        "pizza in Tel Aviv",
        {
            "query": "pizza",
            "categories": ["pizza"],
            "location": {"text": "Tel Aviv", "city": "Tel Aviv"},
            "filters": {"open_now": None},
            "language": "en",
            "confidence": 0.92,
            "granularity": "CITY",
            "ambiguous_tokens": [],
            "requires_location": True,
        },
    ),
    (
        "סושי פתוח עכשיו ברחוב דיזנגוף",
        {
            "query": "סושי",
            "categories": ["sushi"],
            "location": {"text": "רחוב דיזנגוף", "street": "דיזנגוף", "city": "תל אביב"},
            "filters": {"open_now": "open"},
            "language": "he",
            "confidence": 0.88,
            "granularity": "STREET",
            "ambiguous_tokens": [],
            "requires_location": True,
        },
    ),
    (
        "пицца закрыто рядом",
        {
            "query": "пицца",
            "categories": ["pizza"],
            "location": {"near_me": True},
            "filters": {"open_now": "closed"},
            "language": "ru",
            "confidence": 0.8,
            "granularity": "AREA",
            "ambiguous_tokens": [],
            "requires_location": True,
        },
    ),
    (
        "vegan brunch Paris",
        {
            "query": "vegan brunch",
            "categories": ["brunch"],
            "location": {"text": "Paris", "city": "Paris"},
            "filters": {"dietary": ["vegan"]},
            "language": "en",
            "confidence": 0.55,
            "granularity": None,
            "ambiguous_tokens": ["Paris"],
            "requires_location": True,
        },
    ),
]


def _few_shot_messages() -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    for user_prompt, response in FEW_SHOT_EXAMPLES:
        messages.append({"role": "user", "content": user_prompt})
        messages.append({"role": "assistant", "content": json.dumps(response, ensure_ascii=False)})
    return messages


def _open_now_from_payload(value: str | None) -> OpenNowFilter:
    if value == "open":
        return OpenNowFilter.REQUIRE
    if value == "closed":
        return OpenNowFilter.EXCLUDE
    return OpenNowFilter.UNSET


def intent_from_payload(payload: IntentPayload, raw_query: str) -> ParsedIntent:
    location = None
    if payload.location is not None:
        loc = payload.location
        location = LocationRef(
            text=loc.text,
            city=loc.city,
            street=loc.street,
            landmark=loc.landmark,
            near_me=loc.near_me,
            radius_m=loc.radius_m,
        )
        if location.is_empty:
            location = None
    filters = IntentFilters(
        open_now=_open_now_from_payload(payload.filters.open_now),
        price_levels=tuple(payload.filters.price_levels),
        min_rating=payload.filters.min_rating,
        dietary=tuple(string_list(payload.filters.dietary)),
        delivery=payload.filters.delivery,
    )
    return ParsedIntent(
        query=payload.query.strip() or raw_query.strip(),
        categories=tuple(term.lower() for term in string_list(payload.categories)),
        location=location,
        filters=filters,
        language=normalize_language(payload.language),
        confidence=payload.confidence,
        granularity_hint=Granularity(payload.granularity) if payload.granularity else None,
        ambiguous_tokens=tuple(string_list(payload.ambiguous_tokens, limit=3)),
        requires_location=payload.requires_location,
        source="llm",
    )


class LLMIntentExtractor:
    """Single chat-completion call turning a query into a ``ParsedIntent``."""

    def __init__(self, client: ChatCompletionsClient, model: str, max_tokens: int = 450) -> None:
        self._client = client
        self.model = model
        self.max_tokens = max_tokens

    async def extract(
        self,
        query: str,
        session_context: SessionContext | None,
        timeout: float,
    ) -> ParsedIntent:
        normalized = query.strip()
        if not normalized:
            raise ModelError("Empty query")
        digest = _prompt_fingerprint(normalized)
        context = {
            "query": normalized,
            "last_city": session_context.last_city if session_context else None,
            "instructions": "Respond with valid JSON only, matching the schema.",
        }
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": SCHEMA_GUIDE},
            *_few_shot_messages(),
            {"role": "user", "content": json.dumps(context, ensure_ascii=False)},
        ]
        try:
            data = await asyncio.wait_for(
                self._client.complete_json(
                    model=self.model,
                    messages=messages,
                    timeout=timeout,
                    max_tokens=self.max_tokens,
                ),
                timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ModelTimeout("intent extraction timed out") from exc

        try:
            payload = IntentPayload.model_validate(data)
        except ValidationError as exc:
            logger.warning("intent_validation_failed", prompt=digest, errors=exc.error_count())
            raise ModelError("Invalid intent format") from exc

        intent = intent_from_payload(payload, normalized)
        logger.debug("intent_parsed", prompt=digest, confidence=intent.confidence)
        return intent


# ---------------------------------------------------------------------------
# Heuristic fallback
# ---------------------------------------------------------------------------

OPEN_WORDS = (
    "open now",
    "open",
    "פתוח",
    "פתוחה",
    "פתוחים",
    "פתוחות",
    "открыт",
    "открыто",
    "открыты",
    "مفتوح",
    "ouvert",
    "abierto",
)
CLOSED_WORDS = (
    "closed",
    "סגור",
    "סגורה",
    "סגורים",
    "סגורות",
    "закрыт",
    "закрыто",
    "закрыты",
    "مغلق",
    "fermé",
    "cerrado",
)
NEAR_ME_PHRASES = (
    "near me",
    "nearby",
    "around me",
    "close to me",
    "לידי",
    "קרוב אליי",
    "בסביבה",
    "рядом",
    "поблизости",
    "près de moi",
    "cerca de mí",
    "بالقرب مني",
)
KNOWN_CITIES = {
    "tel aviv": "Tel Aviv",
    "תל אביב": "Tel Aviv",
    "jerusalem": "Jerusalem",
    "ירושלים": "Jerusalem",
    "haifa": "Haifa",
    "חיפה": "Haifa",
    "тель-авив": "Tel Aviv",
    "иерусалим": "Jerusalem",
    "хайфа": "Haifa",
    "paris": "Paris",
    "madrid": "Madrid",
}
STOPWORDS = frozenset(
    {"in", "on", "near", "the", "a", "an", "at", "best", "good", "find", "me", "now", "for", "with"}
)

_IN_CITY_RE = re.compile(r"\bin\s+([A-Z][\w'-]*(?:\s+[A-Z][\w'-]*)*)")
_ON_STREET_RE = re.compile(r"\bon\s+([A-Z][\w'-]*(?:\s+[A-Z][\w'-]*)*)")
_NEAR_LANDMARK_RE = re.compile(r"\bnear\s+(?!me\b)(?:the\s+)?([A-Z][\w'-]*(?:\s+[A-Z][\w'-]*)*)")
_HE_STREET_RE = re.compile(r"(?:^|\s)ב?רחוב\s+([\u0590-\u05FF]+(?:\s[\u0590-\u05FF]+)?)")


def _contains_word(text: str, words: tuple[str, ...]) -> bool:
    for word in words:
        if re.search(rf"(?<!\w){re.escape(word)}(?!\w)", text):
            return True
    return False


def detect_open_now(text: str) -> OpenNowFilter:
    """Three-way keyword read of the query; silence stays UNSET."""
    lowered = text.lower()
    if _contains_word(lowered, CLOSED_WORDS):
        return OpenNowFilter.EXCLUDE
    if _contains_word(lowered, OPEN_WORDS):
        return OpenNowFilter.REQUIRE
    return OpenNowFilter.UNSET


def extract_location(text: str) -> LocationRef | None:
    lowered = text.lower()
    near_me = any(phrase in lowered for phrase in NEAR_ME_PHRASES)

    city = None
    for name, canonical in KNOWN_CITIES.items():
        if name in lowered:
            city = canonical
            break
    if city is None:
        match = _IN_CITY_RE.search(text)
        if match:
            city = match.group(1).strip()

    street = None
    match = _ON_STREET_RE.search(text) or _HE_STREET_RE.search(text)
    if match:
        street = match.group(1).strip()

    landmark = None
    match = _NEAR_LANDMARK_RE.search(text)
    if match:
        landmark = match.group(1).strip()

    location = LocationRef(
        text=street or landmark or city,
        city=city,
        street=street,
        landmark=landmark,
        near_me=near_me,
    )
    return None if location.is_empty else location


def heuristic_intent(query: str) -> ParsedIntent:
    """
    Best-effort intent used when the model call fails or times out.

    Reads language from the script, the open/closed constraint from keywords,
    and a coarse location from "in X", "on X", "near X" and "near me".
    """
    text = " ".join(query.split())
    location = extract_location(text)

    strip_terms = [
        *(w for w in CLOSED_WORDS + OPEN_WORDS if len(w.split()) == 1),
        *NEAR_ME_PHRASES,
    ]
    if location is not None:
        strip_terms.extend(t for t in (location.city, location.street, location.landmark) if t)
    remainder = text
    for term in sorted(strip_terms, key=len, reverse=True):
        remainder = re.sub(rf"(?<!\w){re.escape(term)}(?!\w)", " ", remainder, flags=re.IGNORECASE)
    words = [w for w in remainder.split() if w.lower() not in STOPWORDS and w != "רחוב"]
    category_text = " ".join(words) or text

    return ParsedIntent(
        query=category_text,
        categories=tuple(w.lower() for w in words[:3]),
        location=location,
        filters=IntentFilters(open_now=detect_open_now(text)),
        language=detect_language(text),
        confidence=HEURISTIC_CONFIDENCE,
        requires_location=True,
        source="heuristic",
    )


__all__ = [
    "LLMIntentExtractor",
    "intent_from_payload",
    "heuristic_intent",
    "detect_open_now",
    "extract_location",
    "HEURISTIC_CONFIDENCE",
]
