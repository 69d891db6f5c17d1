from __future__ import annotations

from typing import Any

from ..errors import GeocodingFailed
from ..models import Coordinates
from ._http import HttpProvider


class GoogleGeocoder(HttpProvider):
    """Geocoding JSON API adapter resolving free text to a single coordinate."""

    provider_name = "geocode"

    def __init__(self, *args: Any, language: str | None = None, region: str | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.language = language
        self.region = region

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> GoogleGeocoder:
        return cls(
            settings.GOOGLE_API_KEY,
            settings.GOOGLE_GEOCODE_BASE_URL,
            timeout=settings.GEOCODE_TIMEOUT_SECONDS,
            connect_timeout=settings.PROVIDER_CONNECT_TIMEOUT_SECONDS,
            region=settings.PRIMARY_MARKET_REGION,
            **kwargs,
        )

    async def resolve(self, location_text: str) -> Coordinates:
        text = (location_text or "").strip()
        if not text:
            raise GeocodingFailed("empty location text")
        params = {"address": text, "key": self._require_key()}
        if self.language:
            params["language"] = self.language
        if self.region:
            params["region"] = self.region.lower()
        data = await self._request("GET", "/json", params=params)

        status = data.get("status")
        results = data.get("results") or []
        if status == "ZERO_RESULTS" or not results:
            raise GeocodingFailed(f"no match for location text ({status or 'empty'})")
        if status not in (None, "OK"):
            raise GeocodingFailed(f"geocoder status {status}")
        location = (results[0].get("geometry") or {}).get("location") or {}
        try:
            return Coordinates(lat=float(location["lat"]), lng=float(location["lng"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodingFailed("geocoder returned no coordinates") from exc


__all__ = ["GoogleGeocoder"]
