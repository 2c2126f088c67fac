"""MIDI bytes ↔ note payloads, built on ``mido``.

Reading reduces a Standard MIDI File to the notes of its first track that
actually contains notes (type-1 exports put tempo and meter on a
note-less conductor track first).  Writing produces a two-track type-1 file
(conductor + one note track) suitable as a reference upload.

Note pairing rules:
    - ``note_on`` with velocity 0 is a ``note_off``.
    - Overlapping notes of the same pitch/channel close first-in first-out.
    - A note still sounding at end of track ends at the track's last tick
      (at least one tick long).
"""
from __future__ import annotations

import io
import logging
from collections import defaultdict, deque
from collections.abc import Sequence

import mido

from bargen.core.bar_math import compute_bars_from_end_tick, measures_from_time_signatures
from bargen.errors import MidiParseError
from bargen.models.notes import Measure, Note, NotePayload, ParsedMidi

logger = logging.getLogger(__name__)

_DEFAULT_TIMEBASE: int = 480


def load_midi_file(data: bytes) -> mido.MidiFile:
    """Decode raw bytes with mido; raise :class:`MidiParseError` on garbage."""
    if not data:
        raise MidiParseError("MIDI data is empty.")
    try:
        return mido.MidiFile(file=io.BytesIO(data))
    except Exception as exc:
        raise MidiParseError(f"Could not parse MIDI data: {exc}") from exc


def read_track_notes(track: mido.MidiTrack) -> list[Note]:
    """Pair note-on/note-off messages of one track into notes sorted by tick."""
    pending: dict[tuple[int, int], deque[tuple[int, int]]] = defaultdict(deque)
    notes: list[Note] = []
    abs_tick = 0

    for msg in track:
        abs_tick += msg.time
        if msg.type == "note_on" and msg.velocity > 0:
            pending[(msg.channel, msg.note)].append((abs_tick, msg.velocity))
        elif msg.type == "note_off" or (msg.type == "note_on" and msg.velocity == 0):
            queue = pending.get((msg.channel, msg.note))
            if not queue:
                continue
            start, velocity = queue.popleft()
            notes.append(Note(
                tick=start,
                duration=max(1, abs_tick - start),
                velocity=velocity,
                note_number=msg.note,
                channel=msg.channel,
            ))

    for (channel, pitch), queue in pending.items():
        for start, velocity in queue:
            notes.append(Note(
                tick=start,
                duration=max(1, abs_tick - start),
                velocity=velocity,
                note_number=pitch,
                channel=channel,
            ))

    notes.sort(key=lambda n: (n.tick, n.note_number))
    return notes


_NOTE_TYPES = frozenset({"note_on", "note_off"})
_STRUCTURAL_META = frozenset({"track_name", "end_of_track"})


def read_track_extras(track: mido.MidiTrack) -> list[tuple[int, mido.Message]]:
    """Every non-note message of *track* with its absolute tick.

    Program changes, controllers, pitch bends and meta events other than
    the track name and end-of-track marker are returned in file order.
    """
    extras: list[tuple[int, mido.Message]] = []
    abs_tick = 0
    for msg in track:
        abs_tick += msg.time
        if msg.type in _NOTE_TYPES or msg.type in _STRUCTURAL_META:
            continue
        extras.append((abs_tick, msg.copy(time=0)))
    return extras


def read_track_name(track: mido.MidiTrack) -> str:
    for msg in track:
        if msg.type == "track_name":
            return msg.name
    return ""


def read_measures(mid: mido.MidiFile) -> list[Measure]:
    """Meter of the whole file, from time signatures on any track."""
    timebase = mid.ticks_per_beat or _DEFAULT_TIMEBASE
    events: list[tuple[int, int, int]] = []
    for track in mid.tracks:
        abs_tick = 0
        for msg in track:
            abs_tick += msg.time
            if msg.type == "time_signature":
                events.append((abs_tick, msg.numerator, msg.denominator))
    return measures_from_time_signatures(events, timebase)


def parse_midi_first_track(data: bytes, file_name: str = "input.mid") -> ParsedMidi:
    """Parse MIDI bytes and keep only the first track that has notes.

    Falls back to track 0 (yielding an empty payload) when no track has
    notes; callers decide whether an empty payload is an error.

    Raises:
        MidiParseError: If *data* is not a MIDI file or has no tracks.
    """
    mid = load_midi_file(data)
    if not mid.tracks:
        raise MidiParseError("This MIDI file has no usable tracks.")

    timebase = mid.ticks_per_beat or _DEFAULT_TIMEBASE
    chosen = mid.tracks[0]
    notes: list[Note] = []
    for track in mid.tracks:
        track_notes = read_track_notes(track)
        if track_notes:
            chosen, notes = track, track_notes
            break

    end_tick = max((n.end_tick for n in notes), default=0)
    bars = compute_bars_from_end_tick(read_measures(mid), timebase, end_tick)

    logger.debug(
        f"✅ Parsed {file_name}: {len(notes)} notes, {bars} bars, timebase {timebase}"
    )
    return ParsedMidi(
        file_name=file_name,
        track_name=read_track_name(chosen),
        bars=bars,
        payload=NotePayload(timebase=timebase, notes=tuple(notes)),
    )


def track_from_notes(
    notes: Sequence[Note],
    track_name: str = "",
    program: int | None = None,
    channel: int | None = None,
    extras: Sequence[tuple[int, mido.Message]] = (),
) -> mido.MidiTrack:
    """Encode notes as a delta-timed mido track.

    *channel* overrides every note's own channel when given.  *extras* are
    ``(absolute_tick, message)`` pairs, as returned by
    :func:`read_track_extras`, merged in between note-offs and note-ons
    of the same tick.
    """
    track = mido.MidiTrack()
    if track_name:
        track.append(mido.MetaMessage("track_name", name=track_name, time=0))
    if program is not None:
        track.append(mido.Message("program_change", program=program, channel=channel or 0, time=0))

    # (tick, order, message): note_off, then extras, then note_on at the same tick
    timeline: list[tuple[int, int, mido.Message]] = [
        (max(0, tick), 1, msg) for tick, msg in extras
    ]
    for n in notes:
        ch = n.channel if channel is None else channel
        tick = max(0, n.tick)
        timeline.append((tick, 2, mido.Message(
            "note_on", note=n.note_number, velocity=max(1, min(127, n.velocity)), channel=ch,
        )))
        timeline.append((tick + max(1, n.duration), 0, mido.Message(
            "note_off", note=n.note_number, velocity=0, channel=ch,
        )))
    timeline.sort(key=lambda item: (item[0], item[1]))

    last = 0
    for tick, _, msg in timeline:
        track.append(msg.copy(time=tick - last))
        last = tick
    track.append(mido.MetaMessage("end_of_track", time=0))
    return track


def conductor_track(measures: Sequence[Measure], bpm: float = 120.0) -> mido.MidiTrack:
    """Tempo plus one time-signature event per measure segment."""
    track = mido.MidiTrack()
    track.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(bpm), time=0))
    last = 0
    for m in measures:
        track.append(mido.MetaMessage(
            "time_signature",
            numerator=m.numerator,
            denominator=m.denominator,
            time=m.start_tick - last,
        ))
        last = m.start_tick
    track.append(mido.MetaMessage("end_of_track", time=0))
    return track


def notes_to_midi_bytes(
    notes: Sequence[Note],
    timebase: int,
    track_name: str = "piano",
    program: int = 0,
    bpm: float = 120.0,
) -> bytes:
    """Serialize *notes* as an in-memory type-1 MIDI file in 4/4."""
    mid = mido.MidiFile(type=1, ticks_per_beat=timebase)
    mid.tracks.append(conductor_track([Measure(0)], bpm=bpm))
    mid.tracks.append(track_from_notes(notes, track_name=track_name, program=program, channel=0))
    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()
