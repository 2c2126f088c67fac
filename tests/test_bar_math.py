"""Tests for bargen.core.bar_math."""
from __future__ import annotations

import pytest

from bargen.core.bar_math import (
    bar_range_for_bars,
    bar_range_from_one_tick,
    bar_range_from_two_ticks,
    compute_bars_from_end_tick,
    compute_selection_info,
    get_measure_start,
    get_next_measure_tick,
    measures_from_time_signatures,
    tick_of_bar,
)
from bargen.models.notes import Measure, TickRange

TB = 480
BAR = 1920
FOUR_FOUR = [Measure(0)]
# 4/4 for one bar, then 3/4
MIXED = [Measure(0, 0, 4, 4), Measure(BAR, 1, 3, 4)]


class TestMeasuresFromTimeSignatures:

    def test_no_events_is_single_four_four(self) -> None:
        assert measures_from_time_signatures([], TB) == [Measure(0, 0, 4, 4)]

    def test_bar_indices_accumulate(self) -> None:
        ms = measures_from_time_signatures([(0, 4, 4), (2 * BAR, 3, 4)], TB)
        assert ms == [Measure(0, 0, 4, 4), Measure(2 * BAR, 2, 3, 4)]

    def test_missing_initial_signature_defaults_to_four_four(self) -> None:
        ms = measures_from_time_signatures([(BAR, 6, 8)], TB)
        assert ms[0] == Measure(0, 0, 4, 4)
        assert ms[1] == Measure(BAR, 1, 6, 8)

    def test_later_event_at_same_tick_wins(self) -> None:
        ms = measures_from_time_signatures([(0, 4, 4), (0, 3, 4)], TB)
        assert ms == [Measure(0, 0, 3, 4)]

    def test_off_bar_change_starts_new_bar(self) -> None:
        ms = measures_from_time_signatures([(0, 4, 4), (2000, 3, 4)], TB)
        assert ms[1] == Measure(2000, 2, 3, 4)
        assert get_next_measure_tick(ms, BAR, TB) == 2000


class TestMeasureLookup:

    def test_measure_start_in_four_four(self) -> None:
        start = get_measure_start(FOUR_FOUR, 2500, TB)
        assert (start.tick, start.measure) == (BAR, 1)

    def test_measure_start_after_meter_change(self) -> None:
        # 3/4 bars are 1440 ticks long
        start = get_measure_start(MIXED, BAR + 1440 + 10, TB)
        assert (start.tick, start.measure) == (BAR + 1440, 2)

    def test_empty_measures_raise(self) -> None:
        with pytest.raises(ValueError):
            get_measure_start([], 0, TB)

    def test_tick_of_bar(self) -> None:
        assert tick_of_bar(FOUR_FOUR, TB, 1) == 0
        assert tick_of_bar(FOUR_FOUR, TB, 3) == 2 * BAR
        assert tick_of_bar(MIXED, TB, 3) == BAR + 1440


class TestBarRanges:

    def test_two_ticks_in_any_order(self) -> None:
        assert bar_range_from_two_ticks(FOUR_FOUR, TB, 2500, 100) == TickRange(0, 2 * BAR)
        assert bar_range_from_two_ticks(FOUR_FOUR, TB, 100, 2500) == TickRange(0, 2 * BAR)

    def test_one_tick(self) -> None:
        assert bar_range_from_one_tick(FOUR_FOUR, TB, BAR - 1) == TickRange(0, BAR)
        assert bar_range_from_one_tick(FOUR_FOUR, TB, BAR) == TickRange(BAR, 2 * BAR)

    @pytest.mark.parametrize("a,b", [(0, 0), (1, 7000), (5000, 20), (1919, 1920), (9999, 9999)])
    def test_range_is_bar_aligned_and_non_empty(self, a: int, b: int) -> None:
        r = bar_range_from_two_ticks(FOUR_FOUR, TB, a, b)
        assert r.to_tick > r.from_tick
        assert r.from_tick % BAR == 0

    @pytest.mark.parametrize("a,b", [(0, 5000), (BAR + 5, 100), (4000, 4000)])
    def test_mixed_meter_range_starts_on_measure(self, a: int, b: int) -> None:
        r = bar_range_from_two_ticks(MIXED, TB, a, b)
        assert r.to_tick > r.from_tick
        assert r.from_tick == get_measure_start(MIXED, r.from_tick, TB).tick


class TestComputeSelectionInfo:

    def test_two_bars(self) -> None:
        info = compute_selection_info(TickRange(0, 2 * BAR), FOUR_FOUR, TB)
        assert info is not None
        assert info.bars == 2
        assert (info.start_bar, info.end_bar) == (1, 2)
        assert info.bar_start_ticks_abs == (0, BAR)
        assert info.bar_end_ticks_abs == (BAR, 2 * BAR)

    def test_reversed_ticks_are_ordered(self) -> None:
        info = compute_selection_info(TickRange(2 * BAR, 0), FOUR_FOUR, TB)
        assert info is not None
        assert (info.from_tick, info.to_tick) == (0, 2 * BAR)

    def test_empty_or_missing_inputs_return_none(self) -> None:
        assert compute_selection_info(TickRange(100, 100), FOUR_FOUR, TB) is None
        assert compute_selection_info(None, FOUR_FOUR, TB) is None
        assert compute_selection_info(TickRange(0, BAR), [], TB) is None
        assert compute_selection_info(TickRange(0, BAR), FOUR_FOUR, None) is None

    def test_no_downbeat_is_one_synthetic_bar(self) -> None:
        info = compute_selection_info(TickRange(100, 500), FOUR_FOUR, TB)
        assert info is not None
        assert info.bars == 1
        assert info.bar_start_ticks_abs == (100,)
        assert info.bar_end_ticks_abs == (500,)

    def test_mixed_meter_bar_boundaries(self) -> None:
        info = compute_selection_info(TickRange(0, BAR + 2 * 1440), MIXED, TB)
        assert info is not None
        assert info.bar_start_ticks_abs == (0, BAR, BAR + 1440)
        assert info.bar_end_ticks_abs == (BAR, BAR + 1440, BAR + 2 * 1440)
        assert info.end_bar == 3
        assert info.first_bar_ticks == BAR

    def test_end_ticks_chain_into_start_ticks(self) -> None:
        info = compute_selection_info(TickRange(0, 5 * BAR), FOUR_FOUR, TB)
        assert info is not None
        assert info.bars == len(info.bar_start_ticks_abs)
        assert info.bar_end_ticks_abs[:-1] == info.bar_start_ticks_abs[1:]
        assert info.bar_end_ticks_abs[-1] == info.to_tick

    def test_bar_range_for_bars(self) -> None:
        info = bar_range_for_bars(FOUR_FOUR, TB, 2, 3)
        assert info is not None
        assert (info.from_tick, info.to_tick) == (BAR, 3 * BAR)
        assert (info.start_bar, info.end_bar, info.bars) == (2, 3, 2)

    def test_bar_range_for_bars_rejects_inverted(self) -> None:
        assert bar_range_for_bars(FOUR_FOUR, TB, 3, 2) is None
        assert bar_range_for_bars(FOUR_FOUR, TB, 0, 2) is None


class TestComputeBarsFromEndTick:

    @pytest.mark.parametrize("end,bars", [(0, 0), (1, 1), (BAR, 1), (BAR + 1, 2), (4 * BAR, 4)])
    def test_counts_started_bars(self, end: int, bars: int) -> None:
        assert compute_bars_from_end_tick(FOUR_FOUR, TB, end) == bars

    def test_empty_measures(self) -> None:
        assert compute_bars_from_end_tick([], TB, 5000) == 0
