from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, replace

from ..models import Coordinates, OpenNowFilter, OpenState, ParsedIntent, Venue
from ..utils import haversine_m


@dataclass(slots=True, frozen=True)
class RankingWeights:
    rating: float = 10.0
    reviews: float = 5.0
    price_match: float = 3.0
    open_now: float = 20.0
    distance: float = 8.0
    dietary: float = 5.0
    cuisine: float = 3.0
    highly_rated: float = 4.5
    highly_rated_bonus: float = 5.0
    min_viable: float = 10.0
    max_raw: float = 100.0
    distance_max_km: float = 5.0

    @classmethod
    def from_string(cls, payload: str | None) -> RankingWeights:
        base = cls()
        if not payload:
            return base
        mapping: dict[str, float] = {}
        for part in payload.split(","):
            if "=" not in part:
                continue
            key, value = part.split("=", 1)
            key = key.strip().lower()
            try:
                mapping[key] = float(value.strip())
            except ValueError:
                continue
        known = {k: v for k, v in mapping.items() if k in cls.__dataclass_fields__}
        return replace(base, **known)


def score_rating(venue: Venue, weights: RankingWeights) -> tuple[float, list[str]]:
    if not venue.rating:
        return 0.0, []
    score = venue.rating * weights.rating
    if venue.rating >= 4.8:
        return score, ["exceptional_rating"]
    if venue.rating >= weights.highly_rated:
        return score, ["highly_rated"]
    if venue.rating >= 4.0:
        return score, ["good_rating"]
    return score, []


def score_popularity(venue: Venue, weights: RankingWeights) -> tuple[float, list[str]]:
    total = venue.user_ratings_total or 0
    if total <= 0:
        return 0.0, []
    score = math.log10(total + 1) * weights.reviews
    if total >= 500:
        return score, ["very_popular"]
    if total >= 100:
        return score, ["popular"]
    return score, []


def score_price_fit(
    intent: ParsedIntent, venue: Venue, weights: RankingWeights
) -> tuple[float, list[str]]:
    wanted = intent.filters.price_levels
    if not wanted or venue.price_level is None:
        return 0.0, []
    diff = min(abs(level - venue.price_level) for level in wanted)
    if diff == 0:
        return 0.0, ["price_match"]
    return -diff * weights.price_match, []


def score_open_now(
    intent: ParsedIntent, venue: Venue, weights: RankingWeights
) -> tuple[float, list[str]]:
    # EXCLUDE is a hard local filter downstream; only REQUIRE shapes the order
    if intent.filters.open_now is not OpenNowFilter.REQUIRE:
        return 0.0, []
    if venue.open_now is OpenState.OPEN:
        return weights.open_now, ["open_now"]
    if venue.open_now is OpenState.CLOSED:
        return -weights.open_now, []
    return 0.0, []


def _tag_matches(wanted: Sequence[str], venue: Venue) -> list[str]:
    tags = [tag.lower() for tag in venue.tags]
    return [term for term in wanted if any(term.lower() in tag for tag in tags)]


def score_dietary(
    intent: ParsedIntent, venue: Venue, weights: RankingWeights
) -> tuple[float, list[str]]:
    matches = _tag_matches(intent.filters.dietary, venue)
    return len(matches) * weights.dietary, [f"dietary_{term}" for term in matches]


def score_cuisine(
    intent: ParsedIntent, venue: Venue, weights: RankingWeights
) -> tuple[float, list[str]]:
    matches = _tag_matches(intent.categories, venue)
    if not matches:
        return 0.0, []
    return len(matches) * weights.cuisine, ["cuisine_match"]


def score_distance(distance_m: float | None, weights: RankingWeights) -> tuple[float, list[str]]:
    if distance_m is None:
        return 0.0, []
    max_m = weights.distance_max_km * 1000
    # proximity on the same 0-5 scale as stars, linear decay to zero at max_m
    proximity = max(0.0, 5.0 * (1 - distance_m / max_m))
    reasons: list[str] = []
    if distance_m < 500:
        reasons.append("very_close")
    elif distance_m < 1000:
        reasons.append("nearby")
    return proximity * weights.distance, reasons


def distance_from(center: Coordinates | None, venue: Venue) -> float | None:
    if center is None or venue.coords is None:
        return venue.distance_m
    return haversine_m(center.lat, center.lng, venue.coords.lat, venue.coords.lng)


def score_venue(
    intent: ParsedIntent,
    venue: Venue,
    weights: RankingWeights,
    center: Coordinates | None = None,
) -> Venue:
    distance_m = distance_from(center, venue)
    total = 0.0
    reasons: list[str] = []
    for score, why in (
        score_rating(venue, weights),
        score_popularity(venue, weights),
        score_price_fit(intent, venue, weights),
        score_open_now(intent, venue, weights),
        score_dietary(intent, venue, weights),
        score_cuisine(intent, venue, weights),
        score_distance(distance_m, weights),
    ):
        total += score
        reasons.extend(why)
    if venue.rating and venue.rating >= weights.highly_rated:
        total += weights.highly_rated_bonus

    normalized = round(min(100.0, max(0.0, total) / weights.max_raw * 100), 1)
    return replace(
        venue,
        distance_m=distance_m,
        score=normalized,
        match_reasons=tuple(reasons or ["general_match"]),
    )


class RankingService:
    """Weighted, deterministic ordering of provider results."""

    def __init__(self, weights: RankingWeights | None = None, limit: int = 20) -> None:
        self.weights = weights or RankingWeights()
        self.limit = limit

    def rank(
        self,
        venues: Sequence[Venue],
        intent: ParsedIntent,
        center: Coordinates | None = None,
    ) -> list[Venue]:
        scored = [score_venue(intent, venue, self.weights, center) for venue in venues]
        # stable on ties: provider order breaks them
        scored.sort(key=lambda v: v.score, reverse=True)
        viable = [v for v in scored if v.score >= self.weights.min_viable]
        return viable[: self.limit]


__all__ = ["RankingWeights", "RankingService", "score_venue", "distance_from"]
