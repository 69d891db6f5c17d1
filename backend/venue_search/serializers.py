from __future__ import annotations

from typing import Any

from .models import (
    AssistPayload,
    ChipSet,
    Coordinates,
    OpenNowSummary,
    ParsedIntent,
    ResponseMeta,
    ResultGroup,
    SearchResponse,
    Venue,
    chip_effect,
)


def coords_to_dict(c: Coordinates | None) -> dict[str, float] | None:
    if c is None:
        return None
    return {"lat": c.lat, "lng": c.lng}


def venue_to_item(v: Venue) -> dict[str, Any]:
    return {
        "id": v.id,
        "name": v.name,
        "address": v.address,
        "location": coords_to_dict(v.coords),
        "rating": v.rating,
        "userRatingsTotal": v.user_ratings_total,
        "priceLevel": v.price_level,
        "openNow": v.open_now.value,
        "tags": list(v.tags),
        "distanceMeters": round(v.distance_m, 1) if v.distance_m is not None else None,
        "score": v.score,
        "matchReasons": list(v.match_reasons),
    }


def group_to_dict(g: ResultGroup) -> dict[str, Any]:
    return {
        "name": g.name,
        "radiusMeters": g.radius_m,
        "count": len(g.venues),
        "venueIds": [v.id for v in g.venues],
    }


def chips_to_list(chips: ChipSet) -> list[dict[str, Any]]:
    return [
        {
            "kind": chip.kind.value,
            "id": chip.id,
            "label": chip.label,
            "active": chip.active,
            "effect": chip_effect(chip),
        }
        for chip in chips
    ]


def summary_to_dict(s: OpenNowSummary) -> dict[str, int]:
    return {"open": s.open, "closed": s.closed, "unknown": s.unknown, "total": s.total}


def meta_to_dict(m: ResponseMeta) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "mode": m.mode.value,
        "failureReason": m.failure_reason.value,
        "confidence": round(m.confidence, 3),
        "granularity": m.granularity.value if m.granularity else None,
        "language": m.language,
        "languageSource": m.language_source,
        "totalResults": m.total_results,
        "tookMs": m.took_ms,
        "providerCached": m.provider_cached,
        "intentSource": m.intent_source,
    }
    if m.open_now_summary is not None:
        payload["openNowSummary"] = summary_to_dict(m.open_now_summary)
    if m.capabilities is not None:
        payload["capabilities"] = {"closedNowIsDerived": m.capabilities.closed_now_is_derived}
    return payload


def assist_to_dict(a: AssistPayload) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "message": a.message,
        "mode": a.mode.value,
        "language": a.language,
    }
    if a.question:
        payload["question"] = a.question
    return payload


def intent_to_dict(i: ParsedIntent) -> dict[str, Any]:
    location = i.location
    return {
        "query": i.query,
        "categories": list(i.categories),
        "location": (
            {
                "text": location.text,
                "city": location.city,
                "street": location.street,
                "landmark": location.landmark,
                "nearMe": location.near_me,
                "radiusMeters": location.radius_m,
            }
            if location
            else None
        ),
        "openNow": i.filters.open_now.value,
        "priceLevels": list(i.filters.price_levels),
        "minRating": i.filters.min_rating,
        "language": i.language,
    }


def response_to_dict(r: SearchResponse) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "requestId": r.request_id,
        "query": r.query,
        "sessionId": r.session_id,
        "results": [venue_to_item(v) for v in r.results],
        "groups": [group_to_dict(g) for g in r.groups],
        "chips": chips_to_list(r.chips),
        "meta": meta_to_dict(r.meta),
    }
    if r.intent is not None:
        payload["intent"] = intent_to_dict(r.intent)
    # deferred narration: the key is absent, not null
    if r.assist is not None:
        payload["assist"] = assist_to_dict(r.assist)
    return payload


__all__ = [
    "response_to_dict",
    "assist_to_dict",
    "venue_to_item",
    "chips_to_list",
    "meta_to_dict",
]
