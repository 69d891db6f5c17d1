"""Tri-state open/closed handling from request parsing to the local derived filter."""

import pytest
from backend.tests.fakes import make_venue
from backend.venue_search.capabilities import PlacesFilters
from backend.venue_search.models import OpenNowFilter, OpenNowSummary, OpenState
from backend.venue_search.pipeline.open_now import (
    apply_open_now_filter,
    provider_open_now_param,
    summarize_open_now,
)


def _mixed():
    return [
        make_venue("open-1", open_now=OpenState.OPEN),
        make_venue("closed-1", open_now=OpenState.CLOSED),
        make_venue("open-2", open_now=OpenState.OPEN),
        make_venue("unknown-1", open_now=OpenState.UNKNOWN),
        make_venue("closed-2", open_now=OpenState.CLOSED),
    ]


class TestOpenNowParse:
    @pytest.mark.parametrize("value", [None, "", "unset", "any"])
    def test_missing_values_are_unset(self, value):
        assert OpenNowFilter.parse(value) is OpenNowFilter.UNSET

    def test_false_means_exclude_not_unset(self):
        assert OpenNowFilter.parse(False) is OpenNowFilter.EXCLUDE
        assert OpenNowFilter.parse("closed") is OpenNowFilter.EXCLUDE

    def test_true_means_require(self):
        assert OpenNowFilter.parse(True) is OpenNowFilter.REQUIRE
        assert OpenNowFilter.parse("require") is OpenNowFilter.REQUIRE

    def test_unknown_value_rejected(self):
        with pytest.raises(ValueError):
            OpenNowFilter.parse("sometimes")


class TestProviderParam:
    def test_never_sends_false_upstream(self):
        params = {flag: provider_open_now_param(flag) for flag in OpenNowFilter}
        assert params == {
            OpenNowFilter.UNSET: None,
            OpenNowFilter.REQUIRE: True,
            OpenNowFilter.EXCLUDE: None,
        }

    def test_places_filters_refuse_false(self):
        with pytest.raises(ValueError):
            PlacesFilters(open_now=False)
        assert PlacesFilters.for_flag(OpenNowFilter.EXCLUDE).open_now is None


class TestDerivedFilter:
    def test_summary_counts_add_up(self):
        summary = summarize_open_now(_mixed())
        assert summary == OpenNowSummary(open=2, closed=2, unknown=1, total=5)

    def test_summary_rejects_inconsistent_counts(self):
        with pytest.raises(ValueError):
            OpenNowSummary(open=1, closed=1, unknown=1, total=4)

    def test_exclude_keeps_only_closed_and_marks_derived(self):
        outcome = apply_open_now_filter(_mixed(), OpenNowFilter.EXCLUDE)
        assert [v.id for v in outcome.venues] == ["closed-1", "closed-2"]
        assert outcome.derived is True
        # summary describes the set before filtering
        assert outcome.summary.total == 5

    def test_exclude_never_treats_unknown_as_closed(self):
        venues = [make_venue("u", open_now=OpenState.UNKNOWN)]
        outcome = apply_open_now_filter(venues, OpenNowFilter.EXCLUDE)
        assert outcome.venues == ()

    @pytest.mark.parametrize("flag", [OpenNowFilter.UNSET, OpenNowFilter.REQUIRE])
    def test_other_flags_pass_through(self, flag):
        venues = _mixed()
        outcome = apply_open_now_filter(venues, flag)
        assert list(outcome.venues) == venues
        assert outcome.derived is False

    def test_population_drives_summary(self):
        population = _mixed()
        outcome = apply_open_now_filter(population[:2], OpenNowFilter.UNSET, population=population)
        assert outcome.summary.total == 5
        assert len(outcome.venues) == 2
