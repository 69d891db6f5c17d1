"""
Tri-state open/closed filtering.

Places providers can filter natively on "open now" but have no "closed now"
constraint. REQUIRE is therefore delegated upstream, while EXCLUDE is derived
locally from the unconstrained result set and flagged as derived.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..models import OpenNowFilter, OpenNowSummary, OpenState, Venue


@dataclass(slots=True, frozen=True)
class OpenNowOutcome:
    venues: tuple[Venue, ...]
    summary: OpenNowSummary
    derived: bool


def provider_open_now_param(flag: OpenNowFilter) -> bool | None:
    """Upstream open-now parameter for ``flag``. Never returns ``False``."""
    if flag is OpenNowFilter.REQUIRE:
        return True
    return None


def summarize_open_now(venues: Iterable[Venue]) -> OpenNowSummary:
    open_count = closed = unknown = 0
    for venue in venues:
        if venue.open_now is OpenState.OPEN:
            open_count += 1
        elif venue.open_now is OpenState.CLOSED:
            closed += 1
        else:
            unknown += 1
    return OpenNowSummary(
        open=open_count,
        closed=closed,
        unknown=unknown,
        total=open_count + closed + unknown,
    )


def apply_open_now_filter(
    venues: Sequence[Venue],
    flag: OpenNowFilter,
    *,
    population: Sequence[Venue] | None = None,
) -> OpenNowOutcome:
    """
    Apply ``flag`` to ``venues``.

    The summary is taken over ``population`` (the full provider result set)
    when given, otherwise over ``venues``; either way before any filtering.
    Under EXCLUDE only venues whose state is exactly CLOSED survive; UNKNOWN
    is never treated as closed.
    """
    summary = summarize_open_now(population if population is not None else venues)
    if flag is OpenNowFilter.EXCLUDE:
        kept = tuple(v for v in venues if v.open_now is OpenState.CLOSED)
        return OpenNowOutcome(venues=kept, summary=summary, derived=True)
    # REQUIRE was applied upstream; UNSET has no constraint at all
    return OpenNowOutcome(venues=tuple(venues), summary=summary, derived=False)


__all__ = [
    "OpenNowOutcome",
    "provider_open_now_param",
    "summarize_open_now",
    "apply_open_now_filter",
]
