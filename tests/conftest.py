"""Pytest configuration and fixtures."""
from __future__ import annotations

import io
import logging
from collections.abc import Sequence
from unittest.mock import AsyncMock, MagicMock

import mido
import pytest

from bargen.core.scheduler import ManualScheduler
from bargen.core.task_store import TaskStore, reset_task_store
from bargen.services.api_client import ApiClient


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async tests run without markers."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"
    logging.getLogger("httpcore").setLevel(logging.CRITICAL)


@pytest.fixture(autouse=True)
def _reset_task_store():
    """Reset the singleton TaskStore between tests to prevent cross-test pollution."""
    yield
    reset_task_store()


@pytest.fixture
def store() -> TaskStore:
    return TaskStore()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


class RecordingNotifier:
    """Notifier that keeps every message for assertions."""

    def __init__(self) -> None:
        self.successes: list[str] = []
        self.errors: list[str] = []

    def success(self, message: str) -> None:
        self.successes.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def api() -> MagicMock:
    """ApiClient double whose endpoints are AsyncMocks."""
    mock = MagicMock(spec=ApiClient)
    mock.create_session = AsyncMock(return_value={"session_id": "sess-1"})
    mock.submit_chords_to_midis = AsyncMock(return_value={"task_id": "task-1", "status_url": "/tasks/task-1"})
    mock.submit_ref_midi_to_midi = AsyncMock(return_value={"task_id": "task-ref"})
    mock.submit_ref_midis_mix_set = AsyncMock(return_value={"task_id": "task-mix"})
    mock.get_task = AsyncMock()
    mock.download_artifact = AsyncMock()
    mock.download_artifact_by_url = AsyncMock()
    mock.health = AsyncMock(return_value={"status": "ok"})
    return mock


def build_midi(
    notes: Sequence[tuple[int, int, int]],
    timebase: int = 480,
    time_signature: tuple[int, int] = (4, 4),
    conductor: bool = True,
) -> bytes:
    """Type-1 MIDI bytes from ``(tick, duration, pitch)`` triples."""
    mid = mido.MidiFile(type=1, ticks_per_beat=timebase)
    if conductor:
        meta = mido.MidiTrack()
        meta.append(mido.MetaMessage(
            "time_signature", numerator=time_signature[0], denominator=time_signature[1], time=0,
        ))
        meta.append(mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(120), time=0))
        meta.append(mido.MetaMessage("end_of_track", time=0))
        mid.tracks.append(meta)

    track = mido.MidiTrack()
    track.append(mido.MetaMessage("track_name", name="gen", time=0))
    events: list[tuple[int, int, mido.Message]] = []
    for tick, duration, pitch in notes:
        events.append((tick, 1, mido.Message("note_on", note=pitch, velocity=90, time=0)))
        events.append((tick + duration, 0, mido.Message("note_off", note=pitch, velocity=0, time=0)))
    events.sort(key=lambda e: (e[0], e[1]))
    last = 0
    for tick, _, msg in events:
        track.append(msg.copy(time=tick - last))
        last = tick
    track.append(mido.MetaMessage("end_of_track", time=0))
    mid.tracks.append(track)

    buf = io.BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


@pytest.fixture
def midi_factory():
    return build_midi
