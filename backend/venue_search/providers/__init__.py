"""httpx adapters for the geocoding, places-search and chat-completions capabilities."""

from .chat_completions import ChatCompletionsClient
from .google_geocoding import GoogleGeocoder
from .google_places import GooglePlacesClient

__all__ = ["ChatCompletionsClient", "GoogleGeocoder", "GooglePlacesClient"]
