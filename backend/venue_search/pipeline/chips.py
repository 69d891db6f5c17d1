"""
Mode-aware chip generation.

Exactly one chip set exists per response and its family is decided by the mode:
NORMAL gets data-backed filters, sorts and views; RECOVERY gets a fixed set of
ways out of an empty or failed search; CLARIFY gets a few location choices and
a minimal way to explore.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from ..models import (
    ChipSet,
    ClarifyAction,
    ClarifyChip,
    FilterChip,
    Mode,
    OpenNowFilter,
    OpenState,
    ParsedIntent,
    RecoveryAction,
    RecoveryChip,
    RefinementChip,
    SortChip,
    SortKey,
    Venue,
    ViewChip,
    ViewKind,
)

CHIP_LABELS: dict[str, dict[str, str]] = {
    "en": {
        "delivery": "Delivery",
        "takeout": "Takeout",
        "open_now": "Open now",
        "top_rated": "Top rated",
        "budget": "Budget",
        "sort_best_match": "Best match",
        "sort_distance": "Closest",
        "sort_rating": "Highest rated",
        "sort_price": "Price",
        "view_list": "List",
        "view_map": "Map",
        "expand_radius": "Expand search",
        "clear_filters": "Remove filters",
        "try_nearby": "Try nearby",
        "recovery_sort_rating": "Top rated",
        "recovery_map": "Show map",
        "show_closed": "Show closed places",
        "choose_location": "In {place}",
        "closest": "Closest to me",
        "clarify_map": "Show map",
    },
    "he": {
        "delivery": "משלוחים",
        "takeout": "איסוף עצמי",
        "open_now": "פתוח עכשיו",
        "top_rated": "מדורגים גבוה",
        "budget": "זול",
        "sort_best_match": "הכי מתאים",
        "sort_distance": "הכי קרוב",
        "sort_rating": "דירוג גבוה",
        "sort_price": "מחיר",
        "view_list": "רשימה",
        "view_map": "מפה",
        "expand_radius": "הרחב חיפוש",
        "clear_filters": "הסר סינונים",
        "try_nearby": "נסה באזור",
        "recovery_sort_rating": "מדורגים גבוה",
        "recovery_map": "הצג מפה",
        "show_closed": "הצג מקומות סגורים",
        "choose_location": "ב{place}",
        "closest": "הכי קרוב אליי",
        "clarify_map": "הצג מפה",
    },
    "ru": {
        "delivery": "Доставка",
        "takeout": "На вынос",
        "open_now": "Открыто сейчас",
        "top_rated": "Лучший рейтинг",
        "budget": "Недорого",
        "sort_best_match": "Лучшее совпадение",
        "sort_distance": "Ближайшие",
        "sort_rating": "По рейтингу",
        "sort_price": "По цене",
        "view_list": "Список",
        "view_map": "Карта",
        "expand_radius": "Расширить поиск",
        "clear_filters": "Сбросить фильтры",
        "try_nearby": "Искать рядом",
        "recovery_sort_rating": "Лучший рейтинг",
        "recovery_map": "Показать карту",
        "show_closed": "Показать закрытые",
        "choose_location": "В {place}",
        "closest": "Ближайшие ко мне",
        "clarify_map": "Показать карту",
    },
    "ar": {
        "delivery": "توصيل",
        "takeout": "استلام",
        "open_now": "مفتوح الآن",
        "top_rated": "الأعلى تقييماً",
        "budget": "اقتصادي",
        "sort_best_match": "الأفضل تطابقاً",
        "sort_distance": "الأقرب",
        "sort_rating": "حسب التقييم",
        "sort_price": "حسب السعر",
        "view_list": "قائمة",
        "view_map": "خريطة",
        "expand_radius": "توسيع البحث",
        "clear_filters": "إزالة الفلاتر",
        "try_nearby": "جرّب القريب",
        "recovery_sort_rating": "الأعلى تقييماً",
        "recovery_map": "عرض الخريطة",
        "show_closed": "عرض الأماكن المغلقة",
        "choose_location": "في {place}",
        "closest": "الأقرب إليّ",
        "clarify_map": "عرض الخريطة",
    },
    "fr": {
        "delivery": "Livraison",
        "takeout": "À emporter",
        "open_now": "Ouvert maintenant",
        "top_rated": "Les mieux notés",
        "budget": "Petit budget",
        "sort_best_match": "Pertinence",
        "sort_distance": "Les plus proches",
        "sort_rating": "Note",
        "sort_price": "Prix",
        "view_list": "Liste",
        "view_map": "Carte",
        "expand_radius": "Élargir la recherche",
        "clear_filters": "Retirer les filtres",
        "try_nearby": "Chercher à proximité",
        "recovery_sort_rating": "Les mieux notés",
        "recovery_map": "Voir la carte",
        "show_closed": "Voir les lieux fermés",
        "choose_location": "À {place}",
        "closest": "Près de moi",
        "clarify_map": "Voir la carte",
    },
    "es": {
        "delivery": "A domicilio",
        "takeout": "Para llevar",
        "open_now": "Abierto ahora",
        "top_rated": "Mejor valorados",
        "budget": "Económico",
        "sort_best_match": "Más relevante",
        "sort_distance": "Más cercanos",
        "sort_rating": "Valoración",
        "sort_price": "Precio",
        "view_list": "Lista",
        "view_map": "Mapa",
        "expand_radius": "Ampliar búsqueda",
        "clear_filters": "Quitar filtros",
        "try_nearby": "Buscar cerca",
        "recovery_sort_rating": "Mejor valorados",
        "recovery_map": "Ver mapa",
        "show_closed": "Ver lugares cerrados",
        "choose_location": "En {place}",
        "closest": "Cerca de mí",
        "clarify_map": "Ver mapa",
    },
}


def chip_label(key: str, language: str, **values: str) -> str:
    table = CHIP_LABELS.get(language) or CHIP_LABELS["en"]
    template = table.get(key) or CHIP_LABELS["en"][key]
    return template.format(**values) if values else template


def _slug(value: str) -> str:
    return re.sub(r"[^\w]+", "_", value.strip().lower()).strip("_") or "place"


@dataclass(slots=True, frozen=True)
class ChipPolicy:
    sort_min_results: int = 5
    sort_min_confidence: float = 0.7
    max_normal: int = 5
    max_recovery: int = 5
    max_clarify: int = 3
    highly_rated: float = 4.5
    budget_max_price: int = 2
    expand_radius_m: int = 10000
    popular_cities: tuple[str, ...] = ("Tel Aviv", "Jerusalem", "Haifa")

    @classmethod
    def from_settings(cls, settings) -> ChipPolicy:
        return cls(
            sort_min_results=settings.SORT_CHIPS_MIN_RESULTS,
            sort_min_confidence=settings.SORT_CHIPS_MIN_CONFIDENCE,
            max_normal=settings.MAX_NORMAL_CHIPS,
            max_recovery=settings.MAX_RECOVERY_CHIPS,
            max_clarify=settings.MAX_CLARIFY_CHIPS,
            highly_rated=settings.HIGHLY_RATED_THRESHOLD,
            budget_max_price=settings.BUDGET_MAX_PRICE_LEVEL,
            expand_radius_m=settings.EXPAND_RADIUS_CHIP_M,
            popular_cities=tuple(settings.parsed_popular_cities),
        )


class ChipGenerator:
    def __init__(self, policy: ChipPolicy | None = None) -> None:
        self.policy = policy or ChipPolicy()

    def generate(
        self,
        mode: Mode,
        intent: ParsedIntent,
        venues: Sequence[Venue],
        language: str,
        *,
        session_city: str | None = None,
    ) -> ChipSet:
        if mode is Mode.NORMAL:
            chips = self._normal(intent, venues, language)
        elif mode is Mode.RECOVERY:
            chips = self._recovery(intent, venues, language)
        elif mode is Mode.CLARIFY:
            chips = self._clarify(intent, language, session_city)
        else:
            raise TypeError(f"Unknown mode: {mode!r}")
        return ChipSet(mode=mode, chips=tuple(chips))

    # -- NORMAL ---------------------------------------------------------------

    def _filter_chips(
        self, intent: ParsedIntent, venues: Sequence[Venue], language: str
    ) -> list[FilterChip]:
        policy = self.policy
        filters = intent.filters
        chips: list[FilterChip] = []
        if any(v.offers_delivery for v in venues):
            chips.append(
                FilterChip("delivery", chip_label("delivery", language), "delivery", filters.delivery)
            )
        if any(v.offers_takeout for v in venues):
            chips.append(FilterChip("takeout", chip_label("takeout", language), "takeout"))
        if filters.open_now is OpenNowFilter.UNSET and any(
            v.open_now is OpenState.OPEN for v in venues
        ):
            chips.append(FilterChip("open_now", chip_label("open_now", language), "open_now"))
        if any(v.rating is not None and v.rating >= policy.highly_rated for v in venues):
            active = filters.min_rating is not None and filters.min_rating >= policy.highly_rated
            chips.append(
                FilterChip(
                    "top_rated",
                    chip_label("top_rated", language),
                    f"rating>={policy.highly_rated}",
                    active,
                )
            )
        if any(v.price_level is not None and v.price_level <= policy.budget_max_price for v in venues):
            active = bool(filters.price_levels) and max(filters.price_levels) <= policy.budget_max_price
            chips.append(
                FilterChip(
                    "budget",
                    chip_label("budget", language),
                    f"price<={policy.budget_max_price}",
                    active,
                )
            )
        return chips

    def _sort_chips(self, intent: ParsedIntent, count: int, language: str) -> list[SortChip]:
        policy = self.policy
        if count < policy.sort_min_results or intent.confidence < policy.sort_min_confidence:
            return []
        return [
            SortChip("sort_best_match", chip_label("sort_best_match", language), SortKey.BEST_MATCH, True),
            SortChip("sort_distance", chip_label("sort_distance", language), SortKey.DISTANCE),
            SortChip("sort_rating", chip_label("sort_rating", language), SortKey.RATING),
            SortChip("sort_price", chip_label("sort_price", language), SortKey.PRICE),
        ]

    def _view_chips(self, language: str) -> list[ViewChip]:
        return [
            ViewChip("view_list", chip_label("view_list", language), ViewKind.LIST, True),
            ViewChip("view_map", chip_label("view_map", language), ViewKind.MAP),
        ]

    def _normal(
        self, intent: ParsedIntent, venues: Sequence[Venue], language: str
    ) -> list[RefinementChip]:
        views = self._view_chips(language)
        budget = max(0, self.policy.max_normal - len(views))
        # best match leads the list, so truncation keeps the active default
        sorts = self._sort_chips(intent, len(venues), language)[:budget]
        budget -= len(sorts)
        filters = self._filter_chips(intent, venues, language)[:budget]
        return [*filters, *sorts, *views]

    # -- RECOVERY -------------------------------------------------------------

    def _recovery(
        self, intent: ParsedIntent, venues: Sequence[Venue], language: str
    ) -> list[RefinementChip]:
        chips: list[RefinementChip] = [
            RecoveryChip(
                "expand_radius",
                chip_label("expand_radius", language),
                RecoveryAction.EXPAND_RADIUS,
                str(self.policy.expand_radius_m),
            ),
        ]
        if intent.filters.has_constraints:
            chips.append(
                RecoveryChip(
                    "clear_filters", chip_label("clear_filters", language), RecoveryAction.CLEAR_FILTERS
                )
            )
        chips.extend(
            [
                RecoveryChip("try_nearby", chip_label("try_nearby", language), RecoveryAction.TRY_NEARBY),
                RecoveryChip(
                    "sort_rating",
                    chip_label("recovery_sort_rating", language),
                    RecoveryAction.SORT_RATING,
                ),
                RecoveryChip("map", chip_label("recovery_map", language), RecoveryAction.MAP),
            ]
        )

        limit = self.policy.max_recovery
        if intent.filters.open_now is OpenNowFilter.REQUIRE and not venues:
            show_closed = RecoveryChip(
                "show_closed", chip_label("show_closed", language), RecoveryAction.SHOW_CLOSED
            )
            return [show_closed, *chips[: max(0, limit - 1)]]
        return chips[:limit]

    # -- CLARIFY --------------------------------------------------------------

    def _clarify(
        self, intent: ParsedIntent, language: str, session_city: str | None
    ) -> list[RefinementChip]:
        limit = self.policy.max_clarify
        candidates: list[str] = []
        for token in intent.ambiguous_tokens:
            candidates.append(token)
        if session_city:
            candidates.append(session_city)
        candidates.extend(self.policy.popular_cities)

        seen: set[str] = set()
        places: list[ClarifyChip] = []
        for place in candidates:
            key = place.strip().casefold()
            if not key or key in seen:
                continue
            seen.add(key)
            places.append(
                ClarifyChip(
                    f"clarify_{_slug(place)}",
                    chip_label("choose_location", language, place=place),
                    ClarifyAction.CHOOSE_LOCATION,
                    place,
                )
            )

        explore = [
            ClarifyChip("closest", chip_label("closest", language), ClarifyAction.CLOSEST),
            ClarifyChip("map", chip_label("clarify_map", language), ClarifyAction.MAP),
        ]
        # always leave room for at least one way to explore
        chosen: list[RefinementChip] = list(places[: max(0, limit - 1)])
        chosen.extend(explore[: limit - len(chosen)])
        return chosen


__all__ = ["CHIP_LABELS", "ChipPolicy", "ChipGenerator", "chip_label"]
