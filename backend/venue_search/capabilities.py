"""Contracts for the external capabilities the search core depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, Field

from .models import Coordinates, OpenNowFilter, ParsedIntent, Venue
from .pipeline.open_now import provider_open_now_param
from .session import SessionContext


@dataclass(slots=True, frozen=True)
class PlacesFilters:
    """
    Constraints forwarded to the places provider.

    ``open_now`` is ``True`` or ``None``; an upstream "closed now" constraint
    does not exist, so ``False`` is refused at construction.
    """

    open_now: bool | None = None
    price_levels: tuple[int, ...] = ()
    min_rating: float | None = None
    language: str | None = None
    radius_m: float | None = None
    limit: int = 20

    def __post_init__(self) -> None:
        if self.open_now is not None and self.open_now is not True:
            raise ValueError("open_now may only be True or None upstream")

    @classmethod
    def for_flag(cls, flag: OpenNowFilter, **kwargs: Any) -> PlacesFilters:
        return cls(open_now=provider_open_now_param(flag), **kwargs)


class AssistantOutput(BaseModel):
    message: str = Field(default="", max_length=600)
    question: str | None = Field(default=None, max_length=300)


class IntentCapability(Protocol):
    async def extract(
        self,
        query: str,
        session_context: SessionContext | None,
        timeout: float,
    ) -> ParsedIntent: ...


class GeocodeCapability(Protocol):
    async def resolve(self, location_text: str) -> Coordinates: ...


class PlacesCapability(Protocol):
    async def search(
        self,
        query: str,
        location: Coordinates | None,
        filters: PlacesFilters,
    ) -> list[Venue]: ...


class NarrationCapability(Protocol):
    async def complete(
        self,
        prompt_context: dict[str, Any],
        output_schema: type[AssistantOutput],
        timeout: float,
    ) -> AssistantOutput: ...


__all__ = [
    "PlacesFilters",
    "AssistantOutput",
    "IntentCapability",
    "GeocodeCapability",
    "PlacesCapability",
    "NarrationCapability",
]
