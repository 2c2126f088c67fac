"""Note-range transform engine.

Pure functions that move a :class:`NotePayload` between coordinate spaces
and lengths, plus the two track-writing operations built on them.

Pipeline used when applying a generated artifact to a selection::

    parsed payload (artifact timebase, tick 0 = artifact start)
        └── normalize_bar_start_to_zero   drop leading empty bars
        └── reconcile_to_selection        clamp (long) or tile + clamp (short)
        └── replace_in_range              delete [from, to), scale, shift to from

Invariants
----------
- Payload transforms never mutate their input; they return new payloads.
- Every emitted note has ``tick >= 0`` and ``duration >= 1``.
- ``clamp_to_length`` is idempotent; ``tile_to_length`` followed by a clamp to
  the same total length is a fixed point.
- ``scale_and_shift(p, 0, tb, scale=False)`` returns ``p`` unchanged.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import replace

from bargen.daw.ports import Track
from bargen.models.notes import Note, NotePayload, TickRange

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Payload transforms
# ---------------------------------------------------------------------------


def clamp_to_length(payload: NotePayload, length: int) -> NotePayload:
    """Keep only the part of each note inside ``[0, length)``.

    Notes with an empty intersection are dropped; notes crossing either edge
    are cut at it.
    """
    length = math.floor(length)
    if length <= 0:
        return replace(payload, notes=())

    out: list[Note] = []
    for note in payload.notes:
        start = max(0, note.tick)
        end = min(length, note.tick + max(0, note.duration))
        if note.tick >= length or end <= 0:
            continue
        out.append(replace(note, tick=start, duration=max(1, end - start)))
    return replace(payload, notes=tuple(out))


def normalize_bar_start_to_zero(payload: NotePayload, bar_ticks: int) -> NotePayload:
    """Shift notes left so the bar holding the earliest note starts at tick 0."""
    if not payload.notes or bar_ticks <= 0:
        return payload
    min_tick = min(n.tick for n in payload.notes)
    bar_index = min_tick // bar_ticks
    if bar_index <= 0:
        return payload
    offset = bar_index * bar_ticks
    logger.debug(f"Normalizing payload: dropping {bar_index} leading bar(s) ({offset} ticks)")
    return replace(
        payload,
        notes=tuple(replace(n, tick=max(0, n.tick - offset)) for n in payload.notes),
    )


def tile_to_length(payload: NotePayload, loop_len: int, total_len: int) -> NotePayload:
    """Repeat the payload every *loop_len* ticks until *total_len* is covered.

    Notes starting at or past *total_len* are dropped; notes crossing it are
    shortened to end on it.
    """
    if loop_len <= 0 or total_len <= 0 or not payload.notes:
        return replace(payload, notes=())

    out: list[Note] = []
    offset = 0
    while offset < total_len:
        for note in payload.notes:
            tick = note.tick + offset
            if tick >= total_len:
                continue
            end = min(total_len, tick + max(0, note.duration))
            out.append(replace(note, tick=tick, duration=max(1, end - tick)))
        offset += loop_len
    out.sort(key=lambda n: (n.tick, n.note_number))
    return replace(payload, notes=tuple(out))


def scale_and_shift(
    payload: NotePayload,
    base_tick: int,
    target_timebase: int,
    scale: bool = True,
) -> NotePayload:
    """Rescale ticks from ``payload.timebase`` to *target_timebase*, then add *base_tick*."""
    factor = target_timebase / payload.timebase if scale and payload.timebase > 0 else 1.0
    base = max(0, round(base_tick))
    notes = tuple(
        replace(
            n,
            tick=max(0, round(n.tick * factor)) + base,
            duration=max(1, round(max(0, n.duration) * factor)),
        )
        for n in payload.notes
    )
    return NotePayload(timebase=target_timebase if scale else payload.timebase, notes=notes)


def estimate_artifact_bars(payload: NotePayload, bar_ticks: int) -> int:
    """Best-effort bar count of a payload: furthest note end over bar length, rounded up."""
    if bar_ticks <= 0:
        return 1
    return max(1, math.ceil(payload.end_tick / bar_ticks))


def reconcile_to_selection(
    payload: NotePayload,
    artifact_bars: int | None,
    sel_bars: int,
    bar_ticks: int,
    total_len: int | None = None,
) -> NotePayload:
    """Fit *payload* to a destination of *sel_bars* bars.

    An artifact at least as long as the destination keeps its leading part; a
    shorter one is looped to fill it.  *bar_ticks* and *total_len* are in the
    payload's own timebase; *total_len* defaults to ``sel_bars * bar_ticks``.
    When *artifact_bars* is unknown it is estimated from the notes, which can
    be off for artifacts with trailing silence.
    """
    if total_len is None:
        total_len = sel_bars * bar_ticks
    if artifact_bars is None or artifact_bars <= 0:
        artifact_bars = estimate_artifact_bars(payload, bar_ticks)
        logger.debug(f"Artifact bar count unknown; estimated {artifact_bars} from note ends")

    if artifact_bars >= sel_bars:
        return clamp_to_length(payload, total_len)

    logger.info(
        f"🔁 Tiling {artifact_bars}-bar artifact across {sel_bars} bars "
        f"(loop={artifact_bars * bar_ticks} ticks, total={total_len})"
    )
    tiled = tile_to_length(payload, artifact_bars * bar_ticks, total_len)
    return clamp_to_length(tiled, total_len)


# ---------------------------------------------------------------------------
# Track reads
# ---------------------------------------------------------------------------


def _overlaps(note: Note, from_tick: int, to_tick: int) -> bool:
    return note.tick < to_tick and note.end_tick > from_tick


def note_ids_in_range(events: Iterable[Note], from_tick: int, to_tick: int) -> list[int]:
    """IDs of track notes whose span intersects ``[from_tick, to_tick)``."""
    return [
        n.id for n in events
        if n.id is not None and _overlaps(n, from_tick, to_tick)
    ]


def extract_notes_in_range(events: Iterable[Note], from_tick: int, to_tick: int) -> list[Note]:
    """Notes intersecting the range, clipped to it and re-based to tick 0."""
    out: list[Note] = []
    for n in events:
        start = max(n.tick, from_tick)
        end = min(n.end_tick, to_tick)
        if end <= start:
            continue
        out.append(replace(n, tick=start - from_tick, duration=end - start, id=None))
    return out


# ---------------------------------------------------------------------------
# Track writes
# ---------------------------------------------------------------------------


def write_notes_at(
    track: Track,
    payload: NotePayload,
    base_tick: int,
    target_timebase: int,
    scale: bool = True,
) -> int:
    """Add *payload* to *track* starting at *base_tick*. Never removes anything.

    Returns the number of notes added.
    """
    shifted = scale_and_shift(payload, base_tick, target_timebase, scale=scale)
    if shifted.notes:
        track.add_events([replace(n, id=None) for n in shifted.notes])
    return len(shifted.notes)


def replace_in_range(
    track: Track,
    payload: NotePayload,
    tick_range: TickRange,
    target_timebase: int,
    scale: bool = True,
) -> int:
    """Overwrite ``[from_tick, to_tick)`` of *track* with *payload*.

    Every note intersecting the range is removed, then the payload is scaled,
    clipped to the range length and written at ``from_tick``.  Notes wholly
    outside the range are untouched.  Returns the number of notes written.
    """
    remove_ids = note_ids_in_range(track.get_events(), tick_range.from_tick, tick_range.to_tick)
    if remove_ids:
        track.remove_events(remove_ids)

    scaled = scale_and_shift(payload, 0, target_timebase, scale=scale)
    fitted = clamp_to_length(scaled, tick_range.length)
    dropped = len(scaled.notes) - len(fitted.notes)
    if dropped:
        logger.debug(f"Dropped {dropped} note(s) starting past the end of the range")

    written = write_notes_at(track, fitted, tick_range.from_tick, target_timebase, scale=False)
    logger.info(
        f"✏️ Replaced {len(remove_ids)} note(s) with {written} in "
        f"[{tick_range.from_tick}, {tick_range.to_tick})"
    )
    return written
