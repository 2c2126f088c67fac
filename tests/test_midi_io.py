"""Tests for bargen.core.midi_io (mido-backed parsing and writing)."""
from __future__ import annotations

import io

import mido
import pytest

from bargen.core.midi_io import (
    notes_to_midi_bytes,
    parse_midi_first_track,
    read_measures,
    read_track_extras,
    read_track_notes,
)
from bargen.errors import MidiParseError, PreconditionError
from bargen.models.notes import Measure, Note


def _track(*msgs: mido.Message) -> mido.MidiTrack:
    track = mido.MidiTrack()
    track.extend(msgs)
    return track


class TestReadTrackNotes:

    def test_velocity_zero_note_on_closes(self) -> None:
        track = _track(
            mido.Message("note_on", note=60, velocity=100, time=0),
            mido.Message("note_on", note=60, velocity=0, time=240),
        )
        assert read_track_notes(track) == [Note(tick=0, duration=240, velocity=100, note_number=60)]

    def test_overlapping_same_pitch_closes_first_in_first_out(self) -> None:
        track = _track(
            mido.Message("note_on", note=64, velocity=90, time=0),
            mido.Message("note_on", note=64, velocity=70, time=100),
            mido.Message("note_off", note=64, velocity=0, time=100),
            mido.Message("note_off", note=64, velocity=0, time=100),
        )
        notes = read_track_notes(track)
        assert [(n.tick, n.duration, n.velocity) for n in notes] == [(0, 200, 90), (100, 200, 70)]

    def test_unterminated_note_ends_at_last_tick(self) -> None:
        track = _track(
            mido.Message("note_on", note=48, velocity=80, time=10),
            mido.Message("control_change", control=64, value=0, time=500),
        )
        assert [(n.tick, n.duration) for n in read_track_notes(track)] == [(10, 500)]

    def test_stray_note_off_is_ignored(self) -> None:
        track = _track(mido.Message("note_off", note=60, velocity=0, time=50))
        assert read_track_notes(track) == []

    def test_channels_kept_apart(self) -> None:
        track = _track(
            mido.Message("note_on", note=60, velocity=80, channel=0, time=0),
            mido.Message("note_on", note=60, velocity=80, channel=9, time=0),
            mido.Message("note_off", note=60, velocity=0, channel=9, time=100),
            mido.Message("note_off", note=60, velocity=0, channel=0, time=100),
        )
        by_channel = {n.channel: n.duration for n in read_track_notes(track)}
        assert by_channel == {0: 200, 9: 100}


class TestParseFirstTrack:

    def test_skips_conductor_track(self, midi_factory) -> None:
        parsed = parse_midi_first_track(midi_factory([(0, 480, 60), (1920, 480, 62)]), file_name="gen.mid")
        assert parsed.file_name == "gen.mid"
        assert parsed.track_name == "gen"
        assert parsed.bars == 2
        assert parsed.payload.timebase == 480
        assert [n.note_number for n in parsed.payload.notes] == [60, 62]

    def test_single_track_file(self, midi_factory) -> None:
        parsed = parse_midi_first_track(midi_factory([(0, 1920, 60)], conductor=False))
        assert parsed.bars == 1
        assert len(parsed.payload) == 1

    def test_note_ending_on_bar_line_does_not_count_next_bar(self, midi_factory) -> None:
        assert parse_midi_first_track(midi_factory([(0, 3840, 60)])).bars == 2

    def test_three_four_meter(self, midi_factory) -> None:
        parsed = parse_midi_first_track(midi_factory([(0, 1500, 60)], time_signature=(3, 4)))
        assert parsed.bars == 2

    def test_own_timebase_kept(self, midi_factory) -> None:
        parsed = parse_midi_first_track(midi_factory([(0, 960, 60)], timebase=960))
        assert parsed.payload.timebase == 960
        assert parsed.payload.notes[0].duration == 960

    def test_no_notes_gives_empty_payload(self, midi_factory) -> None:
        parsed = parse_midi_first_track(midi_factory([]))
        assert parsed.payload.notes == ()
        assert parsed.bars == 0

    def test_empty_bytes(self) -> None:
        with pytest.raises(MidiParseError, match="empty"):
            parse_midi_first_track(b"")

    def test_garbage_is_a_precondition_failure(self) -> None:
        with pytest.raises(PreconditionError, match="Could not parse MIDI data"):
            parse_midi_first_track(b"RIFF....not a midi file")


def test_read_measures_meter_change(midi_factory) -> None:
    mid = mido.MidiFile(file=io.BytesIO(midi_factory([(0, 10, 60)], time_signature=(6, 8))))
    assert read_measures(mid) == [Measure(0, 0, 6, 8)]


def test_notes_to_midi_bytes_is_readable() -> None:
    notes = [Note(tick=0, duration=240, velocity=100, note_number=67, channel=3)]
    parsed = parse_midi_first_track(notes_to_midi_bytes(notes, timebase=480, track_name="ref"))
    assert parsed.track_name == "ref"
    note = parsed.payload.notes[0]
    assert (note.tick, note.duration, note.note_number, note.channel) == (0, 240, 67, 0)


def test_read_track_extras_keeps_absolute_ticks() -> None:
    track = _track(
        mido.MetaMessage("track_name", name="lead", time=0),
        mido.Message("program_change", program=5, time=0),
        mido.Message("note_on", note=60, velocity=80, time=0),
        mido.Message("control_change", control=7, value=100, time=240),
        mido.Message("note_off", note=60, velocity=0, time=240),
        mido.Message("pitchwheel", pitch=-512, time=10),
    )
    extras = read_track_extras(track)
    assert [(tick, msg.type) for tick, msg in extras] == [
        (0, "program_change"), (240, "control_change"), (490, "pitchwheel"),
    ]
