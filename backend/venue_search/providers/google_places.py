from __future__ import annotations

from typing import Any

from ..capabilities import PlacesFilters
from ..errors import ProviderError
from ..models import Coordinates, OpenState, Venue
from ._http import HttpProvider

FIELD_MASK = ",".join(
    [
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.location",
        "places.rating",
        "places.userRatingCount",
        "places.priceLevel",
        "places.currentOpeningHours.openNow",
        "places.types",
        "places.delivery",
        "places.takeout",
    ]
)

PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}
PRICE_LEVEL_NAMES = {value: key for key, value in PRICE_LEVELS.items()}


class GooglePlacesClient(HttpProvider):
    """Places Text Search (New) adapter."""

    provider_name = "places"

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> GooglePlacesClient:
        return cls(
            settings.GOOGLE_API_KEY,
            settings.GOOGLE_PLACES_BASE_URL,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            connect_timeout=settings.PROVIDER_CONNECT_TIMEOUT_SECONDS,
            **kwargs,
        )

    async def search(
        self,
        query: str,
        location: Coordinates | None,
        filters: PlacesFilters,
    ) -> list[Venue]:
        body = build_search_body(query, location, filters)
        headers = {
            "X-Goog-Api-Key": self._require_key(),
            "X-Goog-FieldMask": FIELD_MASK,
        }
        data = await self._request("POST", "/places:searchText", json=body, headers=headers)
        try:
            return [parse_place(place) for place in data.get("places") or [] if place.get("id")]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ProviderError("places returned malformed payload") from exc


def build_search_body(
    query: str, location: Coordinates | None, filters: PlacesFilters
) -> dict[str, Any]:
    if filters.open_now not in (True, None):
        raise ValueError("Places search has no closed-now constraint; open_now must be True or None")
    body: dict[str, Any] = {"textQuery": query, "pageSize": filters.limit}
    if filters.language:
        body["languageCode"] = filters.language
    if filters.open_now is True:
        body["openNow"] = True
    if filters.price_levels:
        body["priceLevels"] = [
            PRICE_LEVEL_NAMES[level] for level in sorted(set(filters.price_levels)) if level in PRICE_LEVEL_NAMES
        ]
    if filters.min_rating is not None:
        body["minRating"] = filters.min_rating
    if location is not None:
        body["locationBias"] = {
            "circle": {
                "center": {"latitude": location.lat, "longitude": location.lng},
                "radius": float(filters.radius_m or 3000.0),
            }
        }
    return body


def parse_place(place: dict[str, Any]) -> Venue:
    loc = place.get("location") or {}
    coords = None
    if "latitude" in loc and "longitude" in loc:
        coords = Coordinates(lat=float(loc["latitude"]), lng=float(loc["longitude"]))

    hours = place.get("currentOpeningHours") or {}
    open_now = OpenState.from_provider(hours.get("openNow"))

    tags = list(place.get("types") or [])
    if place.get("delivery"):
        tags.append("delivery")
    if place.get("takeout"):
        tags.append("takeout")

    name = (place.get("displayName") or {}).get("text") or place.get("name") or place["id"]
    rating = place.get("rating")
    return Venue(
        id=str(place["id"]),
        name=str(name),
        coords=coords,
        address=place.get("formattedAddress"),
        rating=float(rating) if rating is not None else None,
        user_ratings_total=place.get("userRatingCount"),
        price_level=PRICE_LEVELS.get(place.get("priceLevel") or ""),
        open_now=open_now,
        tags=tuple(tags),
    )


__all__ = ["GooglePlacesClient", "build_search_body", "parse_place", "FIELD_MASK"]
