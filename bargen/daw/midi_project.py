"""In-memory project adapter backed by a Standard MIDI File.

``MidiProject`` satisfies both the ``Song`` and ``Editor`` ports so the
artifact import flows can run outside a GUI editor: load a ``.mid`` file,
overwrite a bar range, save it back.

Only notes are editable.  Everything else a loaded file carries survives
the round trip untouched: note-less tracks (conductor, controller lanes)
are written back verbatim, and each note track keeps its program changes,
controllers, pitch bends and meta events at their original ticks.

Undo is a stack of per-track note snapshots taken by ``push_history()``;
``undo()`` restores the most recent one.
"""
from __future__ import annotations

import io
import logging
from collections.abc import Sequence
from dataclasses import replace

import mido

from bargen.core.midi_io import (
    conductor_track,
    load_midi_file,
    notes_to_midi_bytes,
    read_measures,
    read_track_extras,
    read_track_name,
    read_track_notes,
    track_from_notes,
)
from bargen.core.note_range import extract_notes_in_range
from bargen.errors import PreconditionError
from bargen.models.notes import Measure, Note

logger = logging.getLogger(__name__)


def _track_channel(track: mido.MidiTrack, default: int) -> int:
    """Channel of the first channel message in *track*."""
    return next((m.channel for m in track if not m.is_meta and m.type != "sysex"), default)


class InMemoryTrack:
    """A note list with stable integer ids.

    Notes given to the constructor keep their own channels.  Notes added
    later through ``add_events`` are moved onto the track's ``channel``.
    """

    def __init__(
        self,
        name: str = "",
        channel: int = 0,
        notes: Sequence[Note] = (),
        extras: Sequence[tuple[int, mido.Message]] = (),
    ) -> None:
        self.name = name
        self.channel = channel
        self.extras: list[tuple[int, mido.Message]] = list(extras)
        self._notes: dict[int, Note] = {}
        self._next_id = 0
        self._store(notes)

    def get_events(self) -> list[Note]:
        return sorted(self._notes.values(), key=lambda n: (n.tick, n.note_number, n.id or 0))

    def add_events(self, notes: Sequence[Note]) -> None:
        self._store([replace(n, channel=self.channel) for n in notes])

    def remove_events(self, ids: Sequence[int]) -> None:
        for note_id in ids:
            self._notes.pop(note_id, None)

    def restore(self, notes: Sequence[Note]) -> None:
        """Replace every note with *notes*, channels unchanged."""
        self._notes.clear()
        self._store(notes)

    def _store(self, notes: Sequence[Note]) -> None:
        for note in notes:
            self._notes[self._next_id] = replace(note, id=self._next_id)
            self._next_id += 1

    @property
    def end_tick(self) -> int:
        return max((n.end_tick for n in self._notes.values()), default=0)

    def __len__(self) -> int:
        return len(self._notes)

    def __repr__(self) -> str:
        return f"InMemoryTrack(name={self.name!r}, channel={self.channel}, notes={len(self)})"


class MidiProject:
    """A song held in memory: meter, timebase, tempo and note tracks.

    *passthrough* holds note-less tracks of a loaded file; when it is
    ``None`` (a project built in memory) a conductor track is generated
    from *measures* and *bpm* on save.
    """

    def __init__(
        self,
        timebase: int = 480,
        measures: Sequence[Measure] | None = None,
        tracks: Sequence[InMemoryTrack] = (),
        bpm: float = 120.0,
        passthrough: Sequence[mido.MidiTrack] | None = None,
    ) -> None:
        self._timebase = timebase
        self._measures = list(measures) if measures else [Measure(0)]
        self._tracks: list[InMemoryTrack] = list(tracks)
        self._passthrough = list(passthrough) if passthrough is not None else None
        self.bpm = bpm
        self.end_tick = 0
        self.position = 0
        self.selected_track: InMemoryTrack | None = None
        self._history: list[list[tuple[InMemoryTrack, list[Note]]]] = []
        self.update_end_of_song()

    # ── Song port ────────────────────────────────────────────────────────

    @property
    def measures(self) -> list[Measure]:
        return self._measures

    @property
    def timebase(self) -> int:
        return self._timebase

    @property
    def tracks(self) -> list[InMemoryTrack]:
        return self._tracks

    def create_track(self, channel: int) -> InMemoryTrack:
        return InMemoryTrack(name=f"Track {len(self._tracks) + 1}", channel=channel)

    def insert_track(self, track: InMemoryTrack, index: int) -> None:
        self._tracks.insert(max(0, min(index, len(self._tracks))), track)

    def update_end_of_song(self) -> None:
        self.end_tick = max((t.end_tick for t in self._tracks), default=0)

    # ── Editor port ──────────────────────────────────────────────────────

    def push_history(self) -> None:
        self._history.append([(t, t.get_events()) for t in self._tracks])

    def undo(self) -> bool:
        """Restore the last checkpoint. Returns False when there is none."""
        if not self._history:
            return False
        snapshot = self._history.pop()
        restored: list[InMemoryTrack] = []
        for track, notes in snapshot:
            track.restore(notes)
            restored.append(track)
        self._tracks = restored
        self.update_end_of_song()
        return True

    def jump_to_tick(self, tick: int) -> None:
        self.position = max(0, int(tick))

    def select_track(self, track: InMemoryTrack) -> None:
        self.selected_track = track

    # ── Selections ───────────────────────────────────────────────────────

    def range_to_midi_bytes(self, track: InMemoryTrack, from_tick: int, to_tick: int) -> bytes:
        """Notes of *track* inside ``[from_tick, to_tick)`` as a standalone MIDI file.

        Notes are clipped to the range and rebased to tick 0; the file
        keeps the project's timebase and tempo.

        Raises:
            PreconditionError: If the range holds no notes.
        """
        notes = extract_notes_in_range(track.get_events(), from_tick, to_tick)
        if not notes:
            raise PreconditionError("The selected range has no notes.")
        return notes_to_midi_bytes(
            notes, timebase=self._timebase, track_name=track.name or "selection", bpm=self.bpm,
        )

    # ── File I/O ─────────────────────────────────────────────────────────

    @classmethod
    def from_bytes(cls, data: bytes) -> "MidiProject":
        """Load a MIDI file; note-bearing tracks become editable tracks."""
        mid = load_midi_file(data)
        bpm = 120.0
        for track in mid.tracks:
            tempo_msg = next((m for m in track if m.type == "set_tempo"), None)
            if tempo_msg is not None:
                bpm = mido.tempo2bpm(tempo_msg.tempo)
                break

        tracks: list[InMemoryTrack] = []
        passthrough: list[mido.MidiTrack] = []
        for idx, track in enumerate(mid.tracks):
            notes = read_track_notes(track)
            if not notes:
                passthrough.append(track)
                continue
            tracks.append(InMemoryTrack(
                name=read_track_name(track) or f"Track {idx}",
                channel=_track_channel(track, default=notes[0].channel),
                notes=notes,
                extras=read_track_extras(track),
            ))

        logger.info(
            f"📂 Loaded project: {len(tracks)} track(s) "
            f"(+{len(passthrough)} kept as-is), timebase {mid.ticks_per_beat}"
        )
        return cls(
            timebase=mid.ticks_per_beat or 480,
            measures=read_measures(mid),
            tracks=tracks,
            bpm=bpm,
            passthrough=passthrough,
        )

    def to_bytes(self) -> bytes:
        """Serialize as type 1: note-less tracks first, then note tracks."""
        mid = mido.MidiFile(type=1, ticks_per_beat=self._timebase)
        if self._passthrough is None:
            mid.tracks.append(conductor_track(self._measures, bpm=self.bpm))
        else:
            mid.tracks.extend(self._passthrough)
        for track in self._tracks:
            mid.tracks.append(track_from_notes(
                track.get_events(), track_name=track.name, extras=track.extras,
            ))
        buf = io.BytesIO()
        mid.save(file=buf)
        return buf.getvalue()


class LoggingNotifier:
    """Notifier that reports through the ``bargen`` logger."""

    def __init__(self, name: str = "bargen.notify") -> None:
        self._logger = logging.getLogger(name)

    def success(self, message: str) -> None:
        self._logger.info(f"✅ {message}")

    def error(self, message: str) -> None:
        self._logger.error(f"❌ {message}")
