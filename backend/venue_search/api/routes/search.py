from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from ...models import Coordinates, OpenNowFilter, Query, RequestFilters
from ...orchestrator import SearchOrchestrator
from ...schemas import SearchRequest
from ...serializers import assist_to_dict, response_to_dict

router = APIRouter(tags=["search"])


def get_orchestrator(request: Request) -> SearchOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Search service not ready")
    return orchestrator


def request_to_query(payload: SearchRequest) -> Query:
    filters = payload.filters
    location = payload.user_location
    try:
        open_now = OpenNowFilter.parse(filters.open_now)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return Query(
        text=payload.query,
        session_id=payload.session_id,
        filters=RequestFilters(
            open_now=open_now,
            price_levels=tuple(filters.price_levels),
            min_rating=filters.min_rating,
            language=filters.language,
            ui_language=filters.ui_language,
        ),
        user_location=Coordinates(lat=location.lat, lng=location.lng) if location else None,
        region_code=payload.region_code.upper() if payload.region_code else None,
    )


@router.post("/search")
async def search(payload: SearchRequest, request: Request) -> dict[str, Any]:
    orchestrator = get_orchestrator(request)
    response = await orchestrator.search(
        request_to_query(payload), skip_narration=payload.skip_narration
    )
    return response_to_dict(response)


@router.get("/search/{request_id}/assistant")
async def search_assistant(request_id: str, request: Request) -> dict[str, Any]:
    orchestrator = get_orchestrator(request)
    assist = await orchestrator.narrate(request_id)
    if assist is None:
        raise HTTPException(status_code=404, detail="Unknown or expired request id")
    return {"requestId": request_id, "assist": assist_to_dict(assist)}


__all__ = ["router", "request_to_query"]
