"""Exception taxonomy and the enumerated failure reasons exposed in responses."""

from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    """Machine-checkable failure reasons; the only error detail that leaves the core."""

    NONE = "NONE"
    NO_RESULTS = "NO_RESULTS"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    AMBIGUOUS_QUERY = "AMBIGUOUS_QUERY"
    MISSING_LOCATION = "MISSING_LOCATION"
    GEOCODING_FAILED = "GEOCODING_FAILED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    TIMEOUT = "TIMEOUT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"


class SearchError(RuntimeError):
    """Base class for every error raised inside the search core."""

    reason: FailureReason = FailureReason.PROVIDER_ERROR


class ProviderError(SearchError):
    """Geocoding or places-search failure."""

    reason = FailureReason.PROVIDER_ERROR


class ProviderTimeout(ProviderError):
    reason = FailureReason.TIMEOUT


class GeocodingFailed(ProviderError):
    """The location text could not be resolved to coordinates."""

    reason = FailureReason.GEOCODING_FAILED


class ModelError(SearchError):
    """Language-model call failed or returned unusable output."""

    reason = FailureReason.PROVIDER_ERROR


class ModelTimeout(ModelError):
    reason = FailureReason.TIMEOUT


class QuotaExceeded(SearchError):
    """Upstream quota exhausted. Never retried inline."""

    reason = FailureReason.QUOTA_EXCEEDED


class CapacityExceeded(SearchError):
    """Admission gate refused the request (queue full or queue wait timed out)."""

    reason = FailureReason.CAPACITY_EXCEEDED

    def __init__(self, cause: str = "queue_full") -> None:
        super().__init__(f"capacity exceeded: {cause}")
        self.cause = cause


class DeadlineExceeded(SearchError):
    """A caller's own deadline expired while waiting on shared work."""

    reason = FailureReason.TIMEOUT


def failure_reason_for(exc: BaseException) -> FailureReason:
    if isinstance(exc, SearchError):
        return exc.reason
    if isinstance(exc, TimeoutError):
        return FailureReason.TIMEOUT
    return FailureReason.PROVIDER_ERROR


__all__ = [
    "FailureReason",
    "SearchError",
    "ProviderError",
    "ProviderTimeout",
    "GeocodingFailed",
    "ModelError",
    "ModelTimeout",
    "QuotaExceeded",
    "CapacityExceeded",
    "DeadlineExceeded",
    "failure_reason_for",
]
