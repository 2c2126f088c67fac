"""Artifact import flows: download → parse → reconcile → write.

Two ways a generated MIDI artifact lands in a project:

- ``import_artifact_as_new_track`` appends a fresh track and writes the whole
  artifact at tick 0, rescaled to the project's timebase.
- ``apply_artifact_to_selection`` overwrites a bar-aligned range of an
  existing track.  The artifact is normalized to start on bar zero, then
  clamped (artifact at least as long as the range) or looped (artifact
  shorter than the range) to the range's length before it is written.

Both flows report through the store's per-artifact op flags
(``downloading`` → ``importing`` → cleared) and the notifier.  They never
raise: a failure records its message on the op state, notifies the user and
returns ``False``.  Local preconditions are checked before any download, and
the project is only touched after the payload is known to be non-empty.
"""
from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Sequence

from bargen.core.midi_io import parse_midi_first_track
from bargen.core.note_range import (
    normalize_bar_start_to_zero,
    reconcile_to_selection,
    replace_in_range,
    write_notes_at,
)
from bargen.core.requests import validate_selection
from bargen.core.task_store import TaskStore, get_task_store
from bargen.daw.ports import Editor, Notifier, Song, Track
from bargen.errors import BargenError, PreconditionError
from bargen.models.notes import BarRange, ParsedMidi
from bargen.models.tasks import Artifact
from bargen.services.api_client import ApiClient, get_api_client

logger = logging.getLogger(__name__)

_MAX_CHANNEL: int = 15

# ---------------------------------------------------------------------------
# Mix-sweep artifacts
# ---------------------------------------------------------------------------

_ALPHA_RE = re.compile(r"mix_a\s*([0-9]+(?:\.[0-9]+)?)", re.IGNORECASE)
_ALPHA_EPS: float = 1e-6
WANTED_MIX_ALPHAS: tuple[float, ...] = (0.25, 0.5, 0.75)


def parse_alpha_from_filename(name: str) -> float | None:
    """Interpolation weight encoded in a mix artifact name (``mix_a0.25.mid`` → 0.25)."""
    match = _ALPHA_RE.search(name or "")
    if match is None:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def is_wanted_alpha(alpha: float, wanted: Iterable[float] = WANTED_MIX_ALPHAS) -> bool:
    return any(abs(alpha - w) < _ALPHA_EPS for w in wanted)


def mix_artifacts(
    artifacts: Sequence[Artifact],
    wanted: Iterable[float] = WANTED_MIX_ALPHAS,
) -> list[tuple[float, Artifact]]:
    """Interpolated artifacts of a mix sweep, sorted by weight.

    The endpoint weights (0 and 1 reproduce the inputs) are left out by
    default.
    """
    wanted = tuple(wanted)
    picked: list[tuple[float, Artifact]] = []
    for artifact in artifacts:
        alpha = parse_alpha_from_filename(artifact.filename)
        if alpha is not None and is_wanted_alpha(alpha, wanted):
            picked.append((alpha, artifact))
    picked.sort(key=lambda item: item[0])
    return picked


# ---------------------------------------------------------------------------
# Importer
# ---------------------------------------------------------------------------


class ArtifactImporter:
    """Runs the artifact → project flows against a song/editor pair."""

    def __init__(
        self,
        song: Song,
        editor: Editor,
        notifier: Notifier,
        api: ApiClient | None = None,
        store: TaskStore | None = None,
    ) -> None:
        self.song = song
        self.editor = editor
        self.notifier = notifier
        self.api = api or get_api_client()
        self.store = store or get_task_store()
        self.last_error: BargenError | None = None

    async def _download_and_parse(self, artifact_id: str, filename_hint: str | None) -> ParsedMidi:
        found = self.store.find_artifact(artifact_id)
        artifact = found[1] if found else None

        self.store.set_artifact_op(artifact_id, downloading=True, importing=False, error=None)
        if artifact is not None and artifact.url:
            data = await self.api.download_artifact_by_url(artifact.url)
        else:
            data = await self.api.download_artifact(artifact_id)

        self.store.set_artifact_op(artifact_id, downloading=False, importing=True)
        file_name = filename_hint or (artifact.filename if artifact else None) or f"{artifact_id}.mid"
        return parse_midi_first_track(data, file_name=file_name)

    def _fail(self, artifact_id: str, exc: BargenError) -> bool:
        message = str(exc)
        self.last_error = exc
        logger.error(f"❌ Artifact {artifact_id[:8]}: {message}")
        self.store.set_artifact_op(artifact_id, downloading=False, importing=False, error=message)
        self.notifier.error(message)
        return False

    # ── New track ────────────────────────────────────────────────────────

    async def import_artifact_as_new_track(
        self,
        artifact_id: str,
        filename_hint: str | None = None,
    ) -> bool:
        """Append the artifact as a new track starting at tick 0."""
        self.last_error = None
        try:
            parsed = await self._download_and_parse(artifact_id, filename_hint)
            if not parsed.payload.notes:
                raise PreconditionError("MIDI has no importable note events")

            self.editor.push_history()
            index = len(self.song.tracks)
            track = self.song.create_track(min(index, _MAX_CHANNEL))
            written = write_notes_at(track, parsed.payload, 0, self.song.timebase, scale=True)
            self.song.insert_track(track, index)
            self.song.update_end_of_song()
            self.editor.select_track(track)
            self.editor.jump_to_tick(0)
        except BargenError as exc:
            return self._fail(artifact_id, exc)

        self.store.clear_artifact_op(artifact_id)
        logger.info(f"📥 Imported {parsed.file_name} as track {index + 1} ({written} notes)")
        self.notifier.success(f"Imported {parsed.file_name} as a new track")
        return True

    # ── Overwrite selection ──────────────────────────────────────────────

    async def apply_artifact_to_selection(
        self,
        artifact_id: str,
        selection: BarRange | None,
        track: Track | None,
        task_id: str | None = None,
        artifact_bars: int | None = None,
    ) -> bool:
        """Overwrite *selection* on *track* with the artifact's notes.

        The artifact's length in bars is *artifact_bars* when given, else the
        ``input_bars`` of the originating task (*task_id*, or the task owning
        the artifact in the store), else an estimate from the notes.
        """
        self.last_error = None
        try:
            selection = validate_selection(selection)
            if track is None:
                raise PreconditionError("Select a destination track first.")
        except PreconditionError as exc:
            return self._fail(artifact_id, exc)

        try:
            parsed = await self._download_and_parse(artifact_id, None)
            payload = parsed.payload
            if not payload.notes:
                raise PreconditionError("MIDI has no importable note events")

            project_tb = self.song.timebase
            scale = project_tb / payload.timebase
            bar_ticks = max(1, math.floor(selection.first_bar_ticks / scale))
            total_len = max(1, math.floor(selection.length / scale))

            normalized = normalize_bar_start_to_zero(payload, bar_ticks)
            fitted = reconcile_to_selection(
                normalized,
                artifact_bars or self._artifact_bars(artifact_id, task_id),
                selection.bars,
                bar_ticks,
                total_len=total_len,
            )
            if not fitted.notes:
                raise PreconditionError("Nothing to write after fitting to the selection.")

            self.editor.push_history()
            written = replace_in_range(
                track, fitted, selection.tick_range, project_tb, scale=True,
            )
            self.song.update_end_of_song()
            self.editor.jump_to_tick(selection.from_tick)
        except BargenError as exc:
            return self._fail(artifact_id, exc)

        self.store.clear_artifact_op(artifact_id)
        self.notifier.success(
            f"Applied {parsed.file_name} to bars {selection.start_bar}-{selection.end_bar} "
            f"({written} notes)"
        )
        return True

    def _artifact_bars(self, artifact_id: str, task_id: str | None) -> int | None:
        task = self.store.get(task_id) if task_id else None
        if task is None:
            found = self.store.find_artifact(artifact_id)
            task = found[0] if found else None
        return task.input_bars if task is not None else None
