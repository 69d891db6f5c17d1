"""Local post-filters applied to ranked results before open-now and grouping."""

from __future__ import annotations

from collections.abc import Sequence

from ..models import Granularity, IntentFilters, Venue


def within_city_radius(venues: Sequence[Venue], max_radius_m: float) -> list[Venue]:
    """Drop venues far outside the city; venues without a distance are kept."""
    return [v for v in venues if v.distance_m is None or v.distance_m <= max_radius_m]


def matching_price_levels(venues: Sequence[Venue], levels: Sequence[int]) -> list[Venue]:
    if not levels:
        return list(venues)
    allowed = set(levels)
    return [v for v in venues if v.price_level is None or v.price_level in allowed]


def meeting_min_rating(venues: Sequence[Venue], min_rating: float | None) -> list[Venue]:
    if min_rating is None:
        return list(venues)
    return [v for v in venues if v.rating is not None and v.rating >= min_rating]


def apply_post_filters(
    venues: Sequence[Venue],
    filters: IntentFilters,
    granularity: Granularity,
    city_max_radius_m: float,
) -> list[Venue]:
    result = list(venues)
    if granularity is Granularity.CITY:
        result = within_city_radius(result, city_max_radius_m)
    result = matching_price_levels(result, filters.price_levels)
    result = meeting_min_rating(result, filters.min_rating)
    return result


__all__ = [
    "apply_post_filters",
    "within_city_radius",
    "matching_price_levels",
    "meeting_min_rating",
]
