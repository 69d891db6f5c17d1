"""
Response-language resolution and script classification.

``resolve_language`` walks a fixed priority chain and always returns a
supported language. ``matches_language`` is the script check used to validate
model output; it cannot tell Latin-script languages apart, only scripts.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass

SUPPORTED_LANGUAGES = ("en", "he", "ru", "ar", "fr", "es")

LANGUAGE_ALIASES = {
    "iw": "he",
    "heb": "he",
    "hebrew": "he",
    "eng": "en",
    "english": "en",
    "rus": "ru",
    "russian": "ru",
    "ara": "ar",
    "arabic": "ar",
    "fra": "fr",
    "fre": "fr",
    "french": "fr",
    "spa": "es",
    "spanish": "es",
}

LATIN = "latin"
HEBREW = "hebrew"
CYRILLIC = "cyrillic"
ARABIC = "arabic"

SCRIPT_FAMILIES = {
    "en": LATIN,
    "fr": LATIN,
    "es": LATIN,
    "he": HEBREW,
    "ru": CYRILLIC,
    "ar": ARABIC,
}

FRENCH_HINTS = frozenset({"où", "près", "pas", "cher", "ouvert", "le", "la", "les", "des", "avec"})
SPANISH_HINTS = frozenset({"dónde", "cerca", "barato", "abierto", "el", "los", "las", "con", "comida"})


def normalize_language(value: str | None) -> str | None:
    """Map tags like ``he-IL`` or ``iw`` onto a supported code; ``None`` if unsupported."""
    if not value:
        return None
    lowered = value.strip().lower().replace("_", "-")
    if not lowered:
        return None
    primary = lowered.split("-", 1)[0]
    primary = LANGUAGE_ALIASES.get(lowered, LANGUAGE_ALIASES.get(primary, primary))
    return primary if primary in SUPPORTED_LANGUAGES else None


def char_script(ch: str) -> str | None:
    code = ord(ch)
    if 0x0590 <= code <= 0x05FF or 0xFB1D <= code <= 0xFB4F:
        return HEBREW
    if 0x0400 <= code <= 0x052F:
        return CYRILLIC
    if 0x0600 <= code <= 0x06FF or 0x0750 <= code <= 0x077F or 0xFB50 <= code <= 0xFEFF:
        return ARABIC
    if ch.isalpha() and unicodedata.name(ch, "").startswith("LATIN"):
        return LATIN
    return None


def script_counts(text: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for ch in text:
        if ch.isspace():
            continue
        script = char_script(ch)
        if script is not None:
            counts[script] = counts.get(script, 0) + 1
    return counts


def script_ratio(text: str, language: str) -> float:
    """Share of letters in ``text`` that belong to ``language``'s script family."""
    family = SCRIPT_FAMILIES.get(normalize_language(language) or "")
    if family is None:
        return 0.0
    counts = script_counts(text or "")
    letters = sum(counts.values())
    if letters == 0:
        return 0.0
    return counts.get(family, 0) / letters


def matches_language(text: str | None, language: str, threshold: float = 0.5) -> bool:
    if not text or not text.strip():
        return False
    return script_ratio(text, language) > threshold


def detect_language(text: str | None) -> str | None:
    """Deterministic script-based language guess, ``None`` when no letters are found."""
    counts = script_counts(text or "")
    if not counts:
        return None
    dominant = max(sorted(counts), key=lambda script: counts[script])
    if dominant == HEBREW:
        return "he"
    if dominant == CYRILLIC:
        return "ru"
    if dominant == ARABIC:
        return "ar"
    words = set((text or "").lower().split())
    if words & FRENCH_HINTS or any(ch in (text or "") for ch in "àâçèêëîïôùûœ"):
        return "fr"
    if words & SPANISH_HINTS or any(ch in (text or "") for ch in "ñ¿¡"):
        return "es"
    return "en"


@dataclass(slots=True, frozen=True)
class ResolvedLanguage:
    language: str
    source: str


class LanguageResolver:
    """
    First match wins: session UI language, request language, detected
    language, primary-market region, then the default.
    """

    def __init__(
        self,
        default_language: str = "en",
        primary_region: str | None = "IL",
        primary_language: str = "he",
    ) -> None:
        self.default_language = normalize_language(default_language) or "en"
        self.primary_region = (primary_region or "").upper() or None
        self.primary_language = normalize_language(primary_language) or self.default_language

    @classmethod
    def from_settings(cls, settings) -> LanguageResolver:
        return cls(
            default_language=settings.DEFAULT_LANGUAGE,
            primary_region=settings.PRIMARY_MARKET_REGION,
            primary_language=settings.PRIMARY_MARKET_LANGUAGE,
        )

    def resolve(
        self,
        ui_language: str | None = None,
        base_language: str | None = None,
        detected_language: str | None = None,
        region_code: str | None = None,
    ) -> ResolvedLanguage:
        for source, candidate in (
            ("ui", ui_language),
            ("request", base_language),
            ("detected", detected_language),
        ):
            normalized = normalize_language(candidate)
            if normalized:
                return ResolvedLanguage(normalized, source)
        if region_code and self.primary_region and region_code.strip().upper() == self.primary_region:
            return ResolvedLanguage(self.primary_language, "region")
        return ResolvedLanguage(self.default_language, "default")


def resolve_language(
    ui_language: str | None,
    base_language: str | None,
    detected_language: str | None,
    region_code: str | None,
) -> tuple[str, str]:
    resolved = LanguageResolver().resolve(ui_language, base_language, detected_language, region_code)
    return resolved.language, resolved.source


__all__ = [
    "SUPPORTED_LANGUAGES",
    "normalize_language",
    "script_ratio",
    "matches_language",
    "detect_language",
    "LanguageResolver",
    "ResolvedLanguage",
    "resolve_language",
]
