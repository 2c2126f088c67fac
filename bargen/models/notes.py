"""Note, payload and bar-range value types.

All timing is in integer ticks.  A ``NotePayload`` carries its own
``timebase`` (ticks per quarter note) so payloads from different files can
be rescaled onto a project's timebase.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Note:
    """A single sounding note.

    ``id`` is assigned by the track that stores the note and is ``None`` for
    free-floating notes inside a payload.
    """

    tick: int
    duration: int
    velocity: int = 80
    note_number: int = 60
    channel: int = 0
    id: int | None = None

    @property
    def end_tick(self) -> int:
        return self.tick + max(0, self.duration)


@dataclass(frozen=True)
class NotePayload:
    """A set of notes relative to tick 0, in ``timebase`` ticks per beat."""

    timebase: int
    notes: tuple[Note, ...] = ()

    def __len__(self) -> int:
        return len(self.notes)

    @property
    def end_tick(self) -> int:
        """Furthest note end (exclusive), 0 when empty."""
        return max((n.end_tick for n in self.notes), default=0)


@dataclass(frozen=True)
class Measure:
    """A time-signature segment starting at ``start_tick``.

    ``measure`` is the zero-based bar index at ``start_tick``.  The segment
    runs until the next measure's ``start_tick`` (the last one never ends).
    """

    start_tick: int
    measure: int = 0
    numerator: int = 4
    denominator: int = 4

    def beat_ticks(self, timebase: int) -> int:
        return timebase * 4 // self.denominator

    def bar_ticks(self, timebase: int) -> int:
        return self.beat_ticks(timebase) * self.numerator


@dataclass(frozen=True)
class TickRange:
    """Half-open ``[from_tick, to_tick)`` span of absolute ticks."""

    from_tick: int
    to_tick: int

    @property
    def length(self) -> int:
        return max(0, self.to_tick - self.from_tick)


@dataclass(frozen=True)
class BarRange:
    """A bar-aligned selection.

    ``bar_end_ticks_abs[i] == bar_start_ticks_abs[i + 1]`` except the last
    entry, which equals ``to_tick``.
    """

    from_tick: int
    to_tick: int
    bars: int
    start_bar: int
    end_bar: int
    bar_start_ticks_abs: tuple[int, ...]
    bar_end_ticks_abs: tuple[int, ...]

    @property
    def tick_range(self) -> TickRange:
        return TickRange(self.from_tick, self.to_tick)

    @property
    def length(self) -> int:
        return self.to_tick - self.from_tick

    @property
    def first_bar_ticks(self) -> int:
        """Length of the first bar, the reference bar length for reconciliation."""
        return self.bar_end_ticks_abs[0] - self.bar_start_ticks_abs[0]


@dataclass(frozen=True)
class ParsedMidi:
    """First usable track of a MIDI file, reduced to notes."""

    file_name: str
    track_name: str
    bars: int
    payload: NotePayload
