"""Mode-aware chip generation and chip activation semantics."""

import pytest
from backend.tests.fakes import make_intent, make_settings, make_venue
from backend.venue_search.models import (
    ChipKind,
    ChipSet,
    FilterChip,
    IntentFilters,
    Mode,
    OpenNowFilter,
    OpenState,
    RecoveryAction,
    chip_effect,
)
from backend.venue_search.pipeline.chips import ChipGenerator, ChipPolicy, chip_label


def _venues(n=6, **overrides):
    return [make_venue(str(i), **overrides) for i in range(n)]


class TestNormalChips:
    def test_views_always_present_with_list_active(self):
        chips = ChipGenerator().generate(Mode.NORMAL, make_intent(), _venues(2), "en")
        views = chips.of_kind(ChipKind.VIEW)
        assert [c.id for c in views] == ["view_list", "view_map"]
        assert [c.active for c in views] == [True, False]

    def test_sort_chips_need_enough_confident_results(self):
        generator = ChipGenerator(ChipPolicy(max_normal=10))
        few = generator.generate(Mode.NORMAL, make_intent(), _venues(3), "en")
        assert few.of_kind(ChipKind.SORT) == []

        unsure = generator.generate(Mode.NORMAL, make_intent(confidence=0.65), _venues(6), "en")
        assert unsure.of_kind(ChipKind.SORT) == []

        enough = generator.generate(Mode.NORMAL, make_intent(), _venues(6), "en")
        sorts = enough.of_kind(ChipKind.SORT)
        assert sorts[0].id == "sort_best_match" and sorts[0].active

    def test_filter_chips_are_backed_by_data(self):
        generator = ChipGenerator(ChipPolicy(max_normal=10))
        venues = _venues(2, tags=("restaurant", "delivery"), rating=4.7)
        chips = generator.generate(Mode.NORMAL, make_intent(), venues, "en")
        ids = {c.id for c in chips.of_kind(ChipKind.FILTER)}
        assert "delivery" in ids
        assert "top_rated" in ids
        assert "takeout" not in ids

    def test_open_now_chip_hidden_when_constraint_already_set(self):
        generator = ChipGenerator(ChipPolicy(max_normal=10))
        intent = make_intent(filters=IntentFilters(open_now=OpenNowFilter.EXCLUDE))
        chips = generator.generate(Mode.NORMAL, intent, _venues(2, open_now=OpenState.CLOSED), "en")
        assert chips.get("open_now") is None

    def test_normal_cap_respected(self):
        venues = _venues(8, tags=("delivery", "takeout"), rating=4.7, price_level=1)
        chips = ChipGenerator().generate(Mode.NORMAL, make_intent(), venues, "en")
        assert len(chips) <= 5
        assert chips.get("view_list") is not None
        assert chips.get("sort_best_match").active

    def test_labels_are_localized(self):
        chips = ChipGenerator().generate(Mode.NORMAL, make_intent(), _venues(2), "he")
        assert chips.get("view_map").label == "מפה"
        assert chip_label("view_map", "de") == "Map"


class TestRecoveryChips:
    def test_recovery_set(self):
        chips = ChipGenerator().generate(Mode.RECOVERY, make_intent(), [], "en")
        assert all(c.kind is ChipKind.RECOVERY for c in chips)
        assert chips.chips[0].id == "expand_radius"
        assert chip_effect(chips.chips[0]) == {"action": "expand_radius", "value": "10000"}
        assert chips.get("clear_filters") is None

    def test_clear_filters_only_with_constraints(self):
        intent = make_intent(filters=IntentFilters(min_rating=4.5))
        chips = ChipGenerator().generate(Mode.RECOVERY, intent, [], "en")
        assert chips.get("clear_filters") is not None

    def test_show_closed_first_when_open_now_required_and_empty(self):
        intent = make_intent(filters=IntentFilters(open_now=OpenNowFilter.REQUIRE))
        chips = ChipGenerator().generate(Mode.RECOVERY, intent, [], "en")
        first = chips.chips[0]
        assert first.id == "show_closed"
        assert first.action is RecoveryAction.SHOW_CLOSED
        assert len(chips) <= 5

    @pytest.mark.parametrize("flag", [OpenNowFilter.UNSET, OpenNowFilter.EXCLUDE])
    def test_no_show_closed_without_require(self, flag):
        intent = make_intent(filters=IntentFilters(open_now=flag))
        chips = ChipGenerator().generate(Mode.RECOVERY, intent, [], "en")
        assert chips.get("show_closed") is None

    def test_no_show_closed_when_results_exist(self):
        intent = make_intent(filters=IntentFilters(open_now=OpenNowFilter.REQUIRE))
        chips = ChipGenerator().generate(Mode.RECOVERY, intent, _venues(1), "en")
        assert chips.get("show_closed") is None


class TestClarifyChips:
    def test_clarify_is_small_and_explorable(self):
        intent = make_intent(ambiguous_tokens=("Springfield",))
        chips = ChipGenerator().generate(Mode.CLARIFY, intent, [], "en", session_city="Haifa")
        assert len(chips) == 3
        assert all(c.kind is ChipKind.CLARIFY for c in chips)
        assert chips.chips[0].label == "In Springfield"
        assert chips.chips[1].value == "Haifa"
        assert chips.chips[-1].id == "closest"

    def test_duplicates_collapse(self):
        policy = ChipPolicy(max_clarify=4, popular_cities=("Tel Aviv", "Haifa"))
        intent = make_intent(ambiguous_tokens=("tel aviv",))
        chips = ChipGenerator(policy).generate(Mode.CLARIFY, intent, [], "en", session_city="Tel Aviv")
        values = [c.value for c in chips if c.value]
        assert values == ["tel aviv", "Haifa"]


class TestChipActivation:
    def _set(self):
        return ChipGenerator(ChipPolicy(max_normal=10)).generate(
            Mode.NORMAL,
            make_intent(),
            _venues(6, tags=("delivery", "takeout")),
            "en",
        )

    def test_sort_is_single_select(self):
        chips = self._set().activate("sort_distance")
        sorts = {c.id: c.active for c in chips.of_kind(ChipKind.SORT)}
        assert sorts["sort_distance"] is True
        assert sum(sorts.values()) == 1

    def test_view_is_single_select(self):
        chips = self._set().activate("view_map")
        assert chips.active_ids.count("view_map") == 1
        assert "view_list" not in chips.active_ids
        # sorts untouched
        assert "sort_best_match" in chips.active_ids

    def test_filters_toggle_independently(self):
        chips = self._set().activate("delivery").activate("takeout")
        assert {"delivery", "takeout"} <= set(chips.active_ids)
        chips = chips.activate("delivery")
        assert "delivery" not in chips.active_ids
        assert "takeout" in chips.active_ids

    def test_recovery_chips_have_no_state(self):
        chips = ChipGenerator().generate(Mode.RECOVERY, make_intent(), [], "en")
        assert chips.activate("expand_radius") is chips
        assert chips.active_ids == []

    def test_unknown_chip_id(self):
        with pytest.raises(KeyError):
            self._set().activate("nope")

    def test_unknown_variant_is_rejected(self):
        with pytest.raises(TypeError):
            chip_effect(object())  # type: ignore[arg-type]

    def test_chip_set_is_immutable(self):
        original = ChipSet(Mode.NORMAL, (FilterChip("delivery", "Delivery", "delivery"),))
        toggled = original.activate("delivery")
        assert original.active_ids == []
        assert toggled.active_ids == ["delivery"]


class TestChipPolicy:
    def test_thresholds_come_from_settings(self):
        settings = make_settings(BUDGET_MAX_PRICE_LEVEL=1, EXPAND_RADIUS_CHIP_M=25000)
        generator = ChipGenerator(ChipPolicy.from_settings(settings))

        recovery = generator.generate(Mode.RECOVERY, make_intent(), [], "en")
        assert chip_effect(recovery.get("expand_radius")) == {
            "action": "expand_radius",
            "value": "25000",
        }

        normal = generator.generate(Mode.NORMAL, make_intent(), _venues(2, price_level=1), "en")
        assert normal.get("budget").filter == "price<=1"

    def test_budget_chip_needs_a_venue_within_the_threshold(self):
        generator = ChipGenerator(ChipPolicy.from_settings(make_settings(BUDGET_MAX_PRICE_LEVEL=1)))
        chips = generator.generate(Mode.NORMAL, make_intent(), _venues(2, price_level=2), "en")
        assert chips.get("budget") is None
