"""Editor ports — the only host-editor interfaces bargen core may depend on.

Concrete adapters (e.g. ``bargen.daw.midi_project.MidiProject``) implement
these protocols.  Orchestration code imports ``Track``, ``Song``, ``Editor``
and ``Notifier``; it never imports a concrete adapter directly.
"""
from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from bargen.models.notes import Measure, Note


@runtime_checkable
class Track(Protocol):
    """A note container inside the host project."""

    def get_events(self) -> list[Note]:
        """Return the track's notes, each carrying its track-assigned ``id``."""
        ...

    def add_events(self, notes: Sequence[Note]) -> None:
        """Add notes; the track assigns fresh ids."""
        ...

    def remove_events(self, ids: Sequence[int]) -> None:
        """Remove notes by id. Unknown ids are ignored."""
        ...


@runtime_checkable
class Song(Protocol):
    """The host project: meter, resolution and track list."""

    @property
    def measures(self) -> list[Measure]:
        ...

    @property
    def timebase(self) -> int:
        ...

    @property
    def tracks(self) -> list[Track]:
        ...

    def create_track(self, channel: int) -> Track:
        """Return a new empty track that is not yet part of the song."""
        ...

    def insert_track(self, track: Track, index: int) -> None:
        ...

    def update_end_of_song(self) -> None:
        """Recompute the song length after notes were written."""
        ...


@runtime_checkable
class Editor(Protocol):
    """Editor-level side effects around a destructive write."""

    def push_history(self) -> None:
        """Record an undo checkpoint. Called before any destructive mutation."""
        ...

    def jump_to_tick(self, tick: int) -> None:
        """Move playhead and viewport to *tick*."""
        ...

    def select_track(self, track: Track) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    """User-visible notifications (toasts in a GUI, stderr in the CLI)."""

    def success(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...
