"""Bar/tick math — absolute ticks ↔ bar-aligned ranges.

A song's meter is described by an ordered list of :class:`Measure` segments
(one per time-signature change).  Everything here is pure and synchronous.

Conventions
-----------
- Ranges are half-open ``[from_tick, to_tick)``.
- Bar numbers reported to users are 1-based (``start_bar``/``end_bar``);
  ``Measure.measure`` indices are 0-based.
- A tick before the first measure is treated as belonging to the first
  measure's meter, counted backwards from its ``start_tick``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from bargen.models.notes import BarRange, Measure, TickRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Beat:
    """One beat position: ``beat == 0`` marks a downbeat."""

    tick: int
    measure: int
    beat: int


@dataclass(frozen=True)
class MeasureStart:
    tick: int
    measure: int
    segment: Measure


# ---------------------------------------------------------------------------
# Measure list construction
# ---------------------------------------------------------------------------


def measures_from_time_signatures(
    events: Iterable[tuple[int, int, int]],
    timebase: int,
) -> list[Measure]:
    """Build a measure list from ``(tick, numerator, denominator)`` events.

    Bar indices accumulate across segments.  A time-signature change that does
    not land on a bar line starts a new bar anyway, as notation software does.
    With no events the song is a single 4/4 segment.
    """
    ordered = sorted(events, key=lambda e: e[0])
    if not ordered or ordered[0][0] > 0:
        ordered.insert(0, (0, 4, 4))

    measures: list[Measure] = []
    for tick, numerator, denominator in ordered:
        if measures and measures[-1].start_tick == tick:
            # Later event at the same tick wins
            prev = measures.pop()
            measures.append(Measure(tick, prev.measure, numerator, denominator))
            continue
        if not measures:
            measures.append(Measure(tick, 0, numerator, denominator))
            continue
        prev = measures[-1]
        bar_len = prev.bar_ticks(timebase)
        elapsed = tick - prev.start_tick
        bars = -(-elapsed // bar_len) if bar_len > 0 else 0  # ceil
        measures.append(Measure(tick, prev.measure + bars, numerator, denominator))
    return measures


def _segment_at(measures: Sequence[Measure], tick: int) -> tuple[int, Measure]:
    """Return the index and measure governing *tick* (last with start <= tick)."""
    idx = 0
    for i, m in enumerate(measures):
        if m.start_tick <= tick:
            idx = i
        else:
            break
    return idx, measures[idx]


def get_measure_start(measures: Sequence[Measure], tick: int, timebase: int) -> MeasureStart:
    """Start tick and bar index of the bar containing *tick*."""
    if not measures:
        raise ValueError("measure list is empty")
    _, seg = _segment_at(measures, tick)
    bar_len = seg.bar_ticks(timebase)
    if bar_len <= 0:
        return MeasureStart(seg.start_tick, seg.measure, seg)
    n = (tick - seg.start_tick) // bar_len
    return MeasureStart(seg.start_tick + n * bar_len, seg.measure + n, seg)


def get_next_measure_tick(measures: Sequence[Measure], tick: int, timebase: int) -> int:
    """Start tick of the bar after the one containing *tick*.

    A time-signature change inside the current bar cuts it short.
    """
    start = get_measure_start(measures, tick, timebase)
    candidate = start.tick + start.segment.bar_ticks(timebase)
    idx, _ = _segment_at(measures, tick)
    if idx + 1 < len(measures):
        candidate = min(candidate, measures[idx + 1].start_tick)
    return candidate


def iter_beats_in_range(
    measures: Sequence[Measure],
    timebase: int,
    tick_range: TickRange,
) -> Iterator[Beat]:
    """Yield every beat position inside ``[from_tick, to_tick)`` in order."""
    if not measures or tick_range.to_tick <= tick_range.from_tick:
        return
    tick = tick_range.from_tick
    start = get_measure_start(measures, tick, timebase)
    bar_tick, bar_index = start.tick, start.measure

    while bar_tick < tick_range.to_tick:
        seg_idx, seg = _segment_at(measures, bar_tick)
        beat_len = seg.beat_ticks(timebase)
        next_bar = get_next_measure_tick(measures, bar_tick, timebase)
        if beat_len <= 0 or next_bar <= bar_tick:
            logger.warning(f"Degenerate measure at tick {bar_tick}; stopping beat scan")
            return
        beat_no = 0
        beat_tick = bar_tick
        while beat_tick < next_bar and beat_tick < tick_range.to_tick:
            if beat_tick >= tick_range.from_tick:
                yield Beat(tick=beat_tick, measure=bar_index, beat=beat_no)
            beat_no += 1
            beat_tick += beat_len
        # A meter change resets the running bar index to the segment's own count
        if seg_idx + 1 < len(measures) and next_bar == measures[seg_idx + 1].start_tick:
            bar_index = measures[seg_idx + 1].measure
        else:
            bar_index += 1
        bar_tick = next_bar


# ---------------------------------------------------------------------------
# Selection ranges
# ---------------------------------------------------------------------------


def bar_range_from_two_ticks(
    measures: Sequence[Measure],
    timebase: int,
    tick_a: int,
    tick_b: int,
) -> TickRange:
    """Bar-aligned range covering the bars of both ticks.

    The upper bound is the start of the bar after the later bar, so the
    result is never empty.
    """
    a_start = get_measure_start(measures, tick_a, timebase).tick
    b_start = get_measure_start(measures, tick_b, timebase).tick
    from_tick = min(a_start, b_start)
    to_tick = get_next_measure_tick(measures, max(a_start, b_start), timebase)
    return TickRange(from_tick, to_tick)


def bar_range_from_one_tick(measures: Sequence[Measure], timebase: int, tick: int) -> TickRange:
    """The single bar containing *tick*."""
    start = get_measure_start(measures, tick, timebase).tick
    return TickRange(start, get_next_measure_tick(measures, start, timebase))


def compute_selection_info(
    tick_range: TickRange | None,
    measures: Sequence[Measure] | None,
    timebase: int | None,
) -> BarRange | None:
    """Describe the bars inside *tick_range*.

    Returns None when there is no range, no meter, or the range is empty
    after ordering its endpoints.  A non-empty range with no downbeat in it
    becomes one synthetic bar spanning the whole range.
    """
    if tick_range is None or not measures or timebase is None:
        return None

    from_tick = min(tick_range.from_tick, tick_range.to_tick)
    to_tick = max(tick_range.from_tick, tick_range.to_tick)
    if to_tick <= from_tick:
        return None

    downbeats = [
        b for b in iter_beats_in_range(measures, timebase, TickRange(from_tick, to_tick))
        if b.beat == 0
    ]

    if not downbeats:
        return BarRange(
            from_tick=from_tick,
            to_tick=to_tick,
            bars=1,
            start_bar=1,
            end_bar=1,
            bar_start_ticks_abs=(from_tick,),
            bar_end_ticks_abs=(to_tick,),
        )

    starts = tuple(b.tick for b in downbeats)
    ends = starts[1:] + (to_tick,)
    return BarRange(
        from_tick=from_tick,
        to_tick=to_tick,
        bars=len(starts),
        start_bar=downbeats[0].measure + 1,
        end_bar=downbeats[-1].measure + 1,
        bar_start_ticks_abs=starts,
        bar_end_ticks_abs=ends,
    )


def bar_range_for_bars(
    measures: Sequence[Measure],
    timebase: int,
    from_bar: int,
    to_bar: int,
) -> BarRange | None:
    """Selection covering 1-based bars ``from_bar..to_bar`` inclusive."""
    if from_bar < 1 or to_bar < from_bar:
        return None
    from_tick = tick_of_bar(measures, timebase, from_bar)
    last_start = tick_of_bar(measures, timebase, to_bar)
    to_tick = get_next_measure_tick(measures, last_start, timebase)
    return compute_selection_info(TickRange(from_tick, to_tick), measures, timebase)


def tick_of_bar(measures: Sequence[Measure], timebase: int, bar: int) -> int:
    """Start tick of the 1-based *bar*."""
    index = bar - 1
    seg = measures[0]
    for m in measures:
        if m.measure <= index:
            seg = m
        else:
            break
    return seg.start_tick + (index - seg.measure) * seg.bar_ticks(timebase)


def compute_bars_from_end_tick(
    measures: Sequence[Measure],
    timebase: int,
    end_tick_exclusive: int,
) -> int:
    """Number of bars started within ``[0, end_tick_exclusive)``.

    A note ending exactly on a bar line does not count the following bar.
    """
    if not measures or end_tick_exclusive <= 0:
        return 0
    last_tick = max(0, end_tick_exclusive - 1)
    return sum(
        1
        for b in iter_beats_in_range(measures, timebase, TickRange(0, last_tick + 1))
        if b.beat == 0
    )
