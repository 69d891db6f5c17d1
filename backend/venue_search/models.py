"""Domain model for the venue search core.

Everything here is immutable once built. Pipeline stages derive new values with
``dataclasses.replace`` instead of mutating shared objects, because cached
provider results are shared between concurrent requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar

from .errors import FailureReason


class OpenNowFilter(str, Enum):
    """Tri-state open-now constraint. UNSET means no constraint at all."""

    UNSET = "unset"
    REQUIRE = "require"
    EXCLUDE = "exclude"

    @classmethod
    def parse(cls, value: Any) -> OpenNowFilter:
        """Map wire values onto the enum without collapsing "missing" into "closed"."""
        if value is None or value == "":
            return cls.UNSET
        if isinstance(value, cls):
            return value
        if value is True:
            return cls.REQUIRE
        if value is False:
            return cls.EXCLUDE
        lowered = str(value).strip().lower()
        if lowered in {"require", "open", "open_now", "true"}:
            return cls.REQUIRE
        if lowered in {"exclude", "closed", "closed_now", "false"}:
            return cls.EXCLUDE
        if lowered in {"unset", "any", "none", "null"}:
            return cls.UNSET
        raise ValueError(f"Unrecognized open-now value: {value!r}")


class OpenState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    UNKNOWN = "unknown"

    @classmethod
    def from_provider(cls, value: bool | None) -> OpenState:
        if value is True:
            return cls.OPEN
        if value is False:
            return cls.CLOSED
        return cls.UNKNOWN


class Granularity(str, Enum):
    CITY = "CITY"
    STREET = "STREET"
    LANDMARK = "LANDMARK"
    AREA = "AREA"


class Mode(str, Enum):
    NORMAL = "NORMAL"
    RECOVERY = "RECOVERY"
    CLARIFY = "CLARIFY"


class ChipKind(str, Enum):
    FILTER = "FILTER"
    SORT = "SORT"
    VIEW = "VIEW"
    RECOVERY = "RECOVERY"
    CLARIFY = "CLARIFY"


class SortKey(str, Enum):
    BEST_MATCH = "best_match"
    DISTANCE = "distance"
    RATING = "rating"
    PRICE = "price"


class ViewKind(str, Enum):
    LIST = "list"
    MAP = "map"


class RecoveryAction(str, Enum):
    EXPAND_RADIUS = "expand_radius"
    CLEAR_FILTERS = "clear_filters"
    TRY_NEARBY = "try_nearby"
    SORT_RATING = "sort_rating"
    MAP = "map"
    SHOW_CLOSED = "show_closed"


class ClarifyAction(str, Enum):
    CHOOSE_LOCATION = "choose_location"
    CLOSEST = "closest"
    MAP = "map"


# ---------------------------------------------------------------------------
# Query + intent
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(slots=True, frozen=True)
class LocationRef:
    text: str | None = None
    city: str | None = None
    street: str | None = None
    landmark: str | None = None
    near_me: bool = False
    radius_m: float | None = None
    coords: Coordinates | None = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.text or self.city or self.street or self.landmark or self.near_me or self.coords
        )

    @property
    def geocode_text(self) -> str | None:
        """Text handed to the geocoder, most specific first."""
        city = self.city or ""
        for head in (self.street, self.landmark):
            if head:
                return f"{head}, {city}" if city else head
        return self.city or self.text or None


@dataclass(slots=True, frozen=True)
class IntentFilters:
    open_now: OpenNowFilter = OpenNowFilter.UNSET
    price_levels: tuple[int, ...] = ()
    min_rating: float | None = None
    dietary: tuple[str, ...] = ()
    delivery: bool = False

    @property
    def has_constraints(self) -> bool:
        return (
            self.open_now is not OpenNowFilter.UNSET
            or bool(self.price_levels)
            or self.min_rating is not None
            or bool(self.dietary)
            or self.delivery
        )


@dataclass(slots=True, frozen=True)
class ParsedIntent:
    query: str
    categories: tuple[str, ...] = ()
    location: LocationRef | None = None
    filters: IntentFilters = field(default_factory=IntentFilters)
    language: str | None = None
    confidence: float = 0.0
    granularity_hint: Granularity | None = None
    ambiguous_tokens: tuple[str, ...] = ()
    requires_location: bool = True
    source: str = "llm"


@dataclass(slots=True, frozen=True)
class RequestFilters:
    """Explicit filters sent by the caller alongside the free text."""

    open_now: OpenNowFilter = OpenNowFilter.UNSET
    price_levels: tuple[int, ...] = ()
    min_rating: float | None = None
    language: str | None = None
    ui_language: str | None = None


@dataclass(slots=True, frozen=True)
class Query:
    text: str
    session_id: str | None = None
    filters: RequestFilters = field(default_factory=RequestFilters)
    user_location: Coordinates | None = None
    region_code: str | None = None


def merge_filters(intent: ParsedIntent, explicit: RequestFilters) -> ParsedIntent:
    """Explicit request filters win over what the model extracted, field by field."""
    current = intent.filters
    merged = IntentFilters(
        open_now=(
            explicit.open_now if explicit.open_now is not OpenNowFilter.UNSET else current.open_now
        ),
        price_levels=explicit.price_levels or current.price_levels,
        min_rating=explicit.min_rating if explicit.min_rating is not None else current.min_rating,
        dietary=current.dietary,
        delivery=current.delivery,
    )
    if merged == current:
        return intent
    return replace(intent, filters=merged)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


DELIVERY_TAGS = frozenset({"delivery", "meal_delivery"})
TAKEOUT_TAGS = frozenset({"takeout", "meal_takeaway"})


@dataclass(slots=True, frozen=True)
class Venue:
    id: str
    name: str
    coords: Coordinates | None = None
    address: str | None = None
    rating: float | None = None
    user_ratings_total: int | None = None
    price_level: int | None = None
    open_now: OpenState = OpenState.UNKNOWN
    tags: tuple[str, ...] = ()
    distance_m: float | None = None
    score: float = 0.0
    match_reasons: tuple[str, ...] = ()

    @property
    def offers_delivery(self) -> bool:
        return any(tag in DELIVERY_TAGS for tag in self.tags)

    @property
    def offers_takeout(self) -> bool:
        return any(tag in TAKEOUT_TAGS for tag in self.tags)


@dataclass(slots=True, frozen=True)
class OpenNowSummary:
    open: int
    closed: int
    unknown: int
    total: int

    def __post_init__(self) -> None:
        if self.open + self.closed + self.unknown != self.total:
            raise ValueError("open + closed + unknown must equal total")


@dataclass(slots=True, frozen=True)
class Capabilities:
    closed_now_is_derived: bool = False


@dataclass(slots=True, frozen=True)
class ResultGroup:
    name: str
    venues: tuple[Venue, ...]
    radius_m: float | None = None


# ---------------------------------------------------------------------------
# Chips: a closed set of five variants
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class FilterChip:
    kind: ClassVar[ChipKind] = ChipKind.FILTER

    id: str
    label: str
    filter: str
    active: bool = False


@dataclass(slots=True, frozen=True)
class SortChip:
    kind: ClassVar[ChipKind] = ChipKind.SORT

    id: str
    label: str
    sort: SortKey
    active: bool = False


@dataclass(slots=True, frozen=True)
class ViewChip:
    kind: ClassVar[ChipKind] = ChipKind.VIEW

    id: str
    label: str
    view: ViewKind
    active: bool = False


@dataclass(slots=True, frozen=True)
class RecoveryChip:
    kind: ClassVar[ChipKind] = ChipKind.RECOVERY

    id: str
    label: str
    action: RecoveryAction
    value: str | None = None

    @property
    def active(self) -> bool:
        return False


@dataclass(slots=True, frozen=True)
class ClarifyChip:
    kind: ClassVar[ChipKind] = ChipKind.CLARIFY

    id: str
    label: str
    action: ClarifyAction
    value: str | None = None

    @property
    def active(self) -> bool:
        return False


RefinementChip = FilterChip | SortChip | ViewChip | RecoveryChip | ClarifyChip


def chip_effect(chip: RefinementChip) -> dict[str, Any]:
    """Effect descriptor for a chip. Raises TypeError on anything outside the five variants."""
    if isinstance(chip, FilterChip):
        return {"filter": chip.filter}
    if isinstance(chip, SortChip):
        return {"sort": chip.sort.value}
    if isinstance(chip, ViewChip):
        return {"view": chip.view.value}
    if isinstance(chip, RecoveryChip):
        effect: dict[str, Any] = {"action": chip.action.value}
        if chip.value is not None:
            effect["value"] = chip.value
        return effect
    if isinstance(chip, ClarifyChip):
        effect = {"action": chip.action.value}
        if chip.value is not None:
            effect["value"] = chip.value
        return effect
    raise TypeError(f"Unknown chip variant: {type(chip).__name__}")


@dataclass(slots=True, frozen=True)
class ChipSet:
    """The single control surface of a response."""

    mode: Mode
    chips: tuple[RefinementChip, ...] = ()

    def __iter__(self):
        return iter(self.chips)

    def __len__(self) -> int:
        return len(self.chips)

    def get(self, chip_id: str) -> RefinementChip | None:
        for chip in self.chips:
            if chip.id == chip_id:
                return chip
        return None

    def of_kind(self, kind: ChipKind) -> list[RefinementChip]:
        return [chip for chip in self.chips if chip.kind is kind]

    @property
    def active_ids(self) -> list[str]:
        return [chip.id for chip in self.chips if chip.active]

    def activate(self, chip_id: str) -> ChipSet:
        """
        Apply a user tap on ``chip_id`` and return the new chip set.

        SORT and VIEW are single-select within their own variant; FILTER chips
        toggle independently; RECOVERY and CLARIFY chips are one-shot actions
        with no persistent state.
        """
        target = self.get(chip_id)
        if target is None:
            raise KeyError(chip_id)

        if isinstance(target, FilterChip):
            updated = [
                replace(chip, active=not chip.active) if chip.id == chip_id else chip
                for chip in self.chips
            ]
        elif isinstance(target, (SortChip, ViewChip)):
            updated = []
            for chip in self.chips:
                if type(chip) is type(target):
                    chip = replace(chip, active=chip.id == chip_id)
                updated.append(chip)
        elif isinstance(target, (RecoveryChip, ClarifyChip)):
            return self
        else:
            raise TypeError(f"Unknown chip variant: {type(target).__name__}")
        return ChipSet(mode=self.mode, chips=tuple(updated))


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class AssistPayload:
    message: str
    question: str | None
    mode: Mode
    language: str
    source: str = "fallback"


@dataclass(slots=True, frozen=True)
class ResponseMeta:
    mode: Mode
    failure_reason: FailureReason
    confidence: float
    language: str
    language_source: str
    granularity: Granularity | None = None
    open_now_summary: OpenNowSummary | None = None
    capabilities: Capabilities | None = None
    total_results: int = 0
    took_ms: int = 0
    provider_cached: bool = False
    intent_source: str = "llm"


@dataclass(slots=True, frozen=True)
class SearchResponse:
    request_id: str
    query: str
    results: tuple[Venue, ...]
    groups: tuple[ResultGroup, ...]
    chips: ChipSet
    meta: ResponseMeta
    session_id: str | None = None
    intent: ParsedIntent | None = None
    assist: AssistPayload | None = None


__all__ = [
    "OpenNowFilter",
    "OpenState",
    "Granularity",
    "Mode",
    "ChipKind",
    "SortKey",
    "ViewKind",
    "RecoveryAction",
    "ClarifyAction",
    "Coordinates",
    "LocationRef",
    "IntentFilters",
    "ParsedIntent",
    "RequestFilters",
    "Query",
    "merge_filters",
    "Venue",
    "OpenNowSummary",
    "Capabilities",
    "ResultGroup",
    "FilterChip",
    "SortChip",
    "ViewChip",
    "RecoveryChip",
    "ClarifyChip",
    "RefinementChip",
    "chip_effect",
    "ChipSet",
    "AssistPayload",
    "ResponseMeta",
    "SearchResponse",
]
