from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Intent extraction output (validated model JSON)
# ---------------------------------------------------------------------------


class IntentLocationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str | None = None
    city: str | None = None
    street: str | None = None
    landmark: str | None = None
    near_me: bool = False
    radius_m: float | None = Field(default=None, gt=0, le=50000)


class IntentFiltersPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    # "open" | "closed" | null; null means the query said nothing about hours
    open_now: Literal["open", "closed"] | None = None
    price_levels: list[int] = Field(default_factory=list)
    min_rating: float | None = Field(default=None, ge=0, le=5)
    dietary: list[str] = Field(default_factory=list)
    delivery: bool = False

    @field_validator("price_levels")
    @classmethod
    def _clamp_price_levels(cls, value: list[int]) -> list[int]:
        return sorted({level for level in value if 0 <= level <= 4})


class IntentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query: str = ""
    categories: list[str] = Field(default_factory=list)
    location: IntentLocationPayload | None = None
    filters: IntentFiltersPayload = Field(default_factory=IntentFiltersPayload)
    language: str | None = None
    confidence: float = Field(default=0.5, ge=0, le=1)
    granularity: Literal["CITY", "STREET", "LANDMARK", "AREA"] | None = None
    ambiguous_tokens: list[str] = Field(default_factory=list)
    requires_location: bool = True


# ---------------------------------------------------------------------------
# HTTP request payloads
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SearchFiltersIn(_CamelModel):
    # True/"require" = open now, False/"exclude" = closed now, absent = no constraint
    open_now: bool | Literal["unset", "require", "exclude"] | None = None
    price_levels: list[int] = Field(default_factory=list, max_length=5)
    min_rating: float | None = Field(default=None, ge=0, le=5)
    language: str | None = Field(default=None, max_length=16)
    ui_language: str | None = Field(default=None, max_length=16)

    @field_validator("price_levels")
    @classmethod
    def _valid_price_levels(cls, value: list[int]) -> list[int]:
        for level in value:
            if not 0 <= level <= 4:
                raise ValueError("price levels must be between 0 and 4")
        return sorted(set(value))


class UserLocationIn(_CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class SearchRequest(_CamelModel):
    query: str = Field(min_length=1, max_length=500)
    session_id: str | None = Field(default=None, max_length=128)
    filters: SearchFiltersIn = Field(default_factory=SearchFiltersIn)
    user_location: UserLocationIn | None = None
    region_code: str | None = Field(default=None, min_length=2, max_length=2)
    skip_narration: bool = False

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("query must not be blank")
        return stripped


__all__ = [
    "IntentPayload",
    "IntentLocationPayload",
    "IntentFiltersPayload",
    "SearchFiltersIn",
    "UserLocationIn",
    "SearchRequest",
]
