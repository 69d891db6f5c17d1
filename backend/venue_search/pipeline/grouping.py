from __future__ import annotations

import re
from collections.abc import Sequence

from ..models import Granularity, LocationRef, ParsedIntent, ResultGroup, Venue
from ..settings import GroupRadii

ALL = "all"
EXACT = "exact"
NEARBY = "nearby"

STREET_PATTERNS = (
    re.compile(r"\b(street|st\.?|ave|avenue|road|rd\.?|blvd|boulevard|lane)\b", re.IGNORECASE),
    re.compile(r"\bon\s+\w+", re.IGNORECASE),
    re.compile(r"\b(rue|calle|avenida)\s+\w+", re.IGNORECASE),
    re.compile(r"(^|\s)(רחוב|רח[׳'])\s*\S+"),
    re.compile(r"(^|\s)(улица|ул\.|проспект)\s*\S+", re.IGNORECASE),
    re.compile(r"(^|\s)شارع\s+\S+"),
)

KNOWN_STREETS = frozenset(
    {
        "allenby",
        "אלנבי",
        "dizengoff",
        "דיזנגוף",
        "rothschild",
        "רוטשילד",
        "ben yehuda",
        "בן יהודה",
        "king george",
        "champs-élysées",
        "champs elysees",
    }
)

LANDMARK_PATTERNS = (
    re.compile(
        r"\b(center|centre|mall|tower|towers|station|square|park|museum|market|port|beach|"
        r"university|hospital|stadium|airport|plaza)\b",
        re.IGNORECASE,
    ),
    re.compile(r"(^|\s)(קניון|כיכר|תחנה|תחנת|נמל|שוק|מגדל|מגדלי|פארק|חוף)(\s|$)"),
    re.compile(r"(^|\s)(площадь|вокзал|парк|рынок|торговый центр)(\s|$)", re.IGNORECASE),
    re.compile(r"\b(tour eiffel|arc de triomphe|gare|musée|plaza mayor|estación)\b", re.IGNORECASE),
)


def _location_texts(location: LocationRef) -> list[str]:
    return [t for t in (location.street, location.landmark, location.text) if t]


def has_street_marker(text: str) -> bool:
    lowered = text.lower()
    if any(name in lowered for name in KNOWN_STREETS):
        return True
    return any(pattern.search(text) for pattern in STREET_PATTERNS)


def has_landmark_marker(text: str) -> bool:
    return any(pattern.search(text) for pattern in LANDMARK_PATTERNS)


def classify_granularity(intent: ParsedIntent) -> Granularity:
    """
    Geographic specificity of the intent's location reference.

    Order: explicit hint, STREET, LANDMARK, AREA (near-me or explicit radius),
    then CITY as the default, which also covers an empty location.
    """
    if intent.granularity_hint is not None:
        return intent.granularity_hint
    location = intent.location
    if location is None or location.is_empty:
        return Granularity.CITY

    texts = _location_texts(location)
    if location.street or any(has_street_marker(t) for t in texts):
        return Granularity.STREET
    if location.landmark or any(has_landmark_marker(t) for t in texts):
        return Granularity.LANDMARK
    if location.near_me or location.radius_m:
        return Granularity.AREA
    return Granularity.CITY


def radii_for(granularity: Granularity, radii: GroupRadii) -> tuple[float, float] | None:
    if granularity is Granularity.STREET:
        return radii.street
    if granularity is Granularity.LANDMARK:
        return radii.landmark
    if granularity is Granularity.AREA:
        return radii.area
    return None


def group_results(
    venues: Sequence[Venue],
    granularity: Granularity,
    radii: GroupRadii,
) -> tuple[ResultGroup, ...]:
    """
    Partition ranked venues into named groups, preserving order.

    A city-wide query is never split by distance. Otherwise venues within the
    exact radius go to "exact", those within the nearby radius to "nearby", and
    anything farther is left out of the groups (but not out of the totals).
    """
    pair = radii_for(granularity, radii)
    if pair is None:
        return (ResultGroup(name=ALL, venues=tuple(venues)),)

    exact_radius, nearby_radius = pair
    exact: list[Venue] = []
    nearby: list[Venue] = []
    for venue in venues:
        distance = venue.distance_m
        if distance is None or distance <= exact_radius:
            # no known center: cannot place it further out
            exact.append(venue)
        elif distance <= nearby_radius:
            nearby.append(venue)
    return (
        ResultGroup(name=EXACT, venues=tuple(exact), radius_m=exact_radius),
        ResultGroup(name=NEARBY, venues=tuple(nearby), radius_m=nearby_radius),
    )


__all__ = [
    "classify_granularity",
    "group_results",
    "has_street_marker",
    "has_landmark_marker",
    "radii_for",
    "ALL",
    "EXACT",
    "NEARBY",
]
