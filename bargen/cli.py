"""bargen CLI — Typer application root.

Entry point for the ``bargen`` console script.

Commands
--------
- ``chords``   — submit a chords → MIDI job
- ``ref``      — submit a reference-MIDI → MIDI job
- ``mix``      — submit a two-reference interpolation sweep
- ``status``   — print a task's status as reported by the backend
- ``download`` — save one artifact to disk
- ``apply``    — overwrite a bar range of a ``.mid`` project with an artifact

Submit commands wait for the job to finish by default (``--no-wait`` to
return right after submit) and can save every artifact into ``--out DIR``.

Each command builds an async core and hands it to ``_run``, which runs it
with ``asyncio.run``, closes the shared HTTP client and maps errors to exit
codes (see :class:`~bargen.errors.ExitCode`).
"""
from __future__ import annotations

import asyncio
import json
import logging
import pathlib
from collections.abc import Awaitable, Callable
from typing import List, NoReturn, Optional

import typer

from bargen.config import settings
from bargen.core.bar_math import bar_range_for_bars
from bargen.core.requests import JobInput
from bargen.daw.midi_project import LoggingNotifier, MidiProject
from bargen.errors import BargenError, ExitCode
from bargen.models.tasks import Instrument, Task, TaskKind, TaskStatus
from bargen.services.api_client import ApiClient, close_api_client, get_api_client
from bargen.services.artifact_import import ArtifactImporter, mix_artifacts
from bargen.services.orchestrator import TaskOrchestrator

logger = logging.getLogger(__name__)

cli = typer.Typer(
    name="bargen",
    help="bargen — generate bars of MIDI from chords or reference clips.",
    no_args_is_help=True,
)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@cli.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Generation backend client."""
    configure_logging(verbose or settings.debug)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _run(core: Callable[[], Awaitable[int]], label: str) -> None:
    """Run an async command core and exit with its code."""

    async def _with_cleanup() -> int:
        try:
            return await core()
        finally:
            await close_api_client()

    try:
        code = asyncio.run(_with_cleanup())
    except typer.Exit:
        raise
    except BargenError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=int(exc.exit_code))
    except Exception as exc:
        typer.echo(f"❌ bargen {label} failed: {exc}")
        logger.error(f"❌ bargen {label} error: {exc}", exc_info=True)
        raise typer.Exit(code=int(ExitCode.INTERNAL_ERROR))
    if code != ExitCode.SUCCESS:
        raise typer.Exit(code=code)


def _echo_task(task: Task) -> None:
    typer.echo(f"Task {task.task_id}: {task.status.value}")
    if task.error:
        typer.echo(f"   error: {task.error}")
    for artifact in task.artifacts:
        typer.echo(f"   {artifact.artifact_id}  {artifact.filename}")


async def _save_artifacts(api: ApiClient, task: Task, out_dir: pathlib.Path) -> list[pathlib.Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    saved: list[pathlib.Path] = []
    for artifact in task.artifacts:
        if artifact.url:
            data = await api.download_artifact_by_url(artifact.url)
        else:
            data = await api.download_artifact(artifact.artifact_id)
        path = out_dir / (artifact.filename or f"{artifact.artifact_id}.mid")
        path.write_bytes(data)
        saved.append(path)
        typer.echo(f"💾 {path}")
    return saved


async def _submit_and_follow(
    orchestrator: TaskOrchestrator,
    kind: TaskKind,
    job: JobInput,
    *,
    wait: bool,
    out_dir: pathlib.Path | None,
    timeout: float | None,
) -> int:
    """Submit, optionally wait, and print the outcome. Returns the exit code."""
    try:
        task_id = await orchestrator.submit_task(kind, job, job.instrument)
        typer.echo(f"🚀 Submitted {kind.value}: {task_id}")
        if not wait:
            return ExitCode.SUCCESS

        task = await orchestrator.wait_for_task(task_id, timeout=timeout)
        _echo_task(task)
        if kind == TaskKind.REF_MIDIS_MIX_SET:
            for alpha, artifact in mix_artifacts(task.artifacts):
                typer.echo(f"   α={alpha:g}  {artifact.filename}")
        if task.status != TaskStatus.SUCCEEDED:
            return ExitCode.INTERNAL_ERROR
        if out_dir is not None:
            await _save_artifacts(orchestrator.api, task, out_dir)
        return ExitCode.SUCCESS
    finally:
        await orchestrator.aclose()


def _instrument(value: str | None) -> Instrument | None:
    if not value:
        return None
    inst = Instrument.coerce(value)
    if inst is None:
        raise typer.BadParameter(f"unknown instrument {value!r} (expected piano, guitar or bass)")
    return inst


def _read_midi(path: pathlib.Path) -> bytes:
    if not path.is_file():
        _user_error(f"No such file: {path}")
    return path.read_bytes()


def _user_error(message: str) -> NoReturn:
    typer.echo(f"❌ {message}")
    raise typer.Exit(code=int(ExitCode.USER_ERROR))


def _parse_bars(value: str) -> tuple[int, int]:
    """``"3"`` or ``"3..6"`` as 1-based inclusive bar bounds."""
    first, sep, last = value.partition("..")
    try:
        start = int(first)
        end = int(last) if sep else start
    except ValueError:
        raise typer.BadParameter(f"expected bars as A..B, got {value!r}") from None
    return start, end


def _project_selection(project_path: pathlib.Path, track_index: int, bars: str) -> tuple[bytes, str]:
    """Bars of one note track of a project file, as a standalone reference clip."""
    from_bar, to_bar = _parse_bars(bars)
    try:
        project = MidiProject.from_bytes(_read_midi(project_path))
    except BargenError as exc:
        _user_error(str(exc))
    if not 0 <= track_index < len(project.tracks):
        _user_error(f"Track {track_index} out of range (project has {len(project.tracks)}).")
    selection = bar_range_for_bars(project.measures, project.timebase, from_bar, to_bar)
    if selection is None:
        _user_error(f"Invalid bar range {bars!r}.")
    try:
        data = project.range_to_midi_bytes(
            project.tracks[track_index], selection.from_tick, selection.to_tick,
        )
    except BargenError as exc:
        _user_error(str(exc))
    logger.debug(f"✂️ Bars {from_bar}-{to_bar} of track {track_index} from {project_path.name}")
    return data, f"{project_path.stem}_bars{from_bar}-{to_bar}.mid"


def _references(
    files: list[pathlib.Path],
    project_path: pathlib.Path | None,
    sides: list[tuple[str, int, str | None]],
) -> list[tuple[bytes, str]]:
    """Resolve each reference side to MIDI bytes and a filename.

    A side with a bar selection is cut from *project_path*; the others
    take the positional files in order.
    """
    remaining = list(files)
    resolved: list[tuple[bytes, str]] = []
    for label, track_index, bars in sides:
        if bars is not None:
            if project_path is None:
                _user_error(f"{label}: a bar selection needs --from-project.")
            resolved.append(_project_selection(project_path, track_index, bars))
        elif remaining:
            path = remaining.pop(0)
            resolved.append((_read_midi(path), path.name))
        else:
            _user_error(f"{label}: give a MIDI file or a bar selection from --from-project.")
    if remaining:
        _user_error(f"Unused MIDI file(s): {', '.join(str(p) for p in remaining)}")
    return resolved


# ---------------------------------------------------------------------------
# Submit commands
# ---------------------------------------------------------------------------


@cli.command("chords")
def chords_cmd(
    chords: List[str] = typer.Argument(..., help="One chord symbol per bar, e.g. C Am F G."),
    bars: Optional[int] = typer.Option(None, "--bars", help="Bar count (default: one per chord)."),
    bpm: float = typer.Option(settings.default_bpm, "--bpm", help="Tempo in BPM."),
    inst: str = typer.Option(settings.default_instrument, "--inst", help="piano, guitar or bass."),
    n_midi: int = typer.Option(settings.default_n_midi, "--n-midi", help="Number of variations."),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for the job to finish."),
    out: Optional[pathlib.Path] = typer.Option(None, "--out", "-o", help="Save artifacts here."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up waiting after N seconds."),
) -> None:
    """Generate MIDI from a chord progression."""
    job = JobInput(chords=tuple(chords), bars=bars, bpm=bpm, instrument=_instrument(inst), n_midi=n_midi)

    async def _core() -> int:
        orchestrator = TaskOrchestrator(api=get_api_client(), notifier=LoggingNotifier())
        return await _submit_and_follow(
            orchestrator, TaskKind.CHORDS_TO_MIDIS, job, wait=wait, out_dir=out, timeout=timeout,
        )

    _run(_core, "chords")


@cli.command("ref")
def ref_cmd(
    midi_file: Optional[pathlib.Path] = typer.Argument(None, help="Reference MIDI file."),
    chords: List[str] = typer.Option(..., "--chords", "-c", help="Chord symbol (repeat per bar)."),
    bars: Optional[int] = typer.Option(None, "--bars", help="Bar count (default: one per chord)."),
    bpm: float = typer.Option(settings.default_bpm, "--bpm", help="Tempo in BPM."),
    inst: Optional[str] = typer.Option(None, "--inst", help="piano, guitar or bass."),
    from_project: Optional[pathlib.Path] = typer.Option(
        None, "--from-project", help="Project MIDI file to cut the reference from."
    ),
    track: int = typer.Option(0, "--track", help="Zero-based index among the project's note tracks."),
    selection: Optional[str] = typer.Option(
        None, "--selection", help="Project bars to use as the reference, A..B (1-based, inclusive)."
    ),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for the job to finish."),
    out: Optional[pathlib.Path] = typer.Option(None, "--out", "-o", help="Save artifacts here."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up waiting after N seconds."),
) -> None:
    """Generate MIDI in the style of a reference clip."""
    [(data, filename)] = _references(
        [midi_file] if midi_file is not None else [],
        from_project,
        [("Reference", track, selection)],
    )
    job = JobInput(
        chords=tuple(chords),
        bars=bars,
        bpm=bpm,
        instrument=_instrument(inst),
        ref_midi=data,
        ref_filename=filename,
    )

    async def _core() -> int:
        orchestrator = TaskOrchestrator(api=get_api_client(), notifier=LoggingNotifier())
        return await _submit_and_follow(
            orchestrator, TaskKind.REF_MIDI_TO_MIDI, job, wait=wait, out_dir=out, timeout=timeout,
        )

    _run(_core, "ref")


@cli.command("mix")
def mix_cmd(
    midi_a: Optional[pathlib.Path] = typer.Argument(None, help="First reference MIDI file."),
    midi_b: Optional[pathlib.Path] = typer.Argument(None, help="Second reference MIDI file."),
    chords: List[str] = typer.Option(..., "--chords", "-c", help="Chord symbol (repeat per bar)."),
    bars: Optional[int] = typer.Option(None, "--bars", help="Bar count (default: one per chord)."),
    bpm: float = typer.Option(settings.default_bpm, "--bpm", help="Tempo in BPM."),
    alpha: Optional[List[float]] = typer.Option(None, "--alpha", help="Mix weight (repeatable)."),
    from_project: Optional[pathlib.Path] = typer.Option(
        None, "--from-project", help="Project MIDI file to cut references from."
    ),
    a_track: int = typer.Option(0, "--a-track", help="Note track for --a-selection."),
    a_selection: Optional[str] = typer.Option(None, "--a-selection", help="Project bars A..B to use as clip A."),
    b_track: int = typer.Option(0, "--b-track", help="Note track for --b-selection."),
    b_selection: Optional[str] = typer.Option(None, "--b-selection", help="Project bars A..B to use as clip B."),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for the job to finish."),
    out: Optional[pathlib.Path] = typer.Option(None, "--out", "-o", help="Save artifacts here."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up waiting after N seconds."),
) -> None:
    """Interpolate between two reference clips.

    Each clip is a MIDI file or, with ``--a-selection``/``--b-selection``,
    a bar range of a ``--from-project`` file.
    """
    (data_a, _), (data_b, _) = _references(
        [p for p in (midi_a, midi_b) if p is not None],
        from_project,
        [("A", a_track, a_selection), ("B", b_track, b_selection)],
    )
    job = JobInput(
        chords=tuple(chords),
        bars=bars,
        bpm=bpm,
        midi_a=data_a,
        midi_b=data_b,
        alphas=tuple(alpha) if alpha else None,
    )

    async def _core() -> int:
        orchestrator = TaskOrchestrator(api=get_api_client(), notifier=LoggingNotifier())
        return await _submit_and_follow(
            orchestrator, TaskKind.REF_MIDIS_MIX_SET, job, wait=wait, out_dir=out, timeout=timeout,
        )

    _run(_core, "mix")


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


@cli.command("status")
def status_cmd(
    task_id: str = typer.Argument(..., help="Task id returned by a submit command."),
) -> None:
    """Print a task's backend status as JSON."""

    async def _core() -> int:
        response = await get_api_client().get_task(task_id)
        typer.echo(json.dumps(response, indent=2, ensure_ascii=False))
        return ExitCode.SUCCESS

    _run(_core, "status")


@cli.command("download")
def download_cmd(
    artifact_id: str = typer.Argument(..., help="Artifact id."),
    output: pathlib.Path = typer.Option(..., "--output", "-o", help="Destination file."),
) -> None:
    """Save one artifact's MIDI bytes to disk."""

    async def _core() -> int:
        data = await get_api_client().download_artifact(artifact_id)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(data)
        typer.echo(f"💾 {output} ({len(data)} bytes)")
        return ExitCode.SUCCESS

    _run(_core, "download")


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


async def _apply_async(
    *,
    api: ApiClient,
    artifact_id: str,
    project_path: pathlib.Path,
    track_index: int,
    from_bar: int,
    to_bar: int | None,
    artifact_bars: int | None,
    output: pathlib.Path,
) -> int:
    """Overwrite bars of one track in a MIDI project file with an artifact."""
    project = MidiProject.from_bytes(_read_midi(project_path))

    if not 0 <= track_index < len(project.tracks):
        typer.echo(f"❌ Track {track_index} out of range (project has {len(project.tracks)}).")
        return ExitCode.USER_ERROR

    selection = bar_range_for_bars(
        project.measures, project.timebase, from_bar, to_bar if to_bar is not None else from_bar,
    )
    if selection is None:
        typer.echo(f"❌ Invalid bar range: {from_bar}..{to_bar}")
        return ExitCode.USER_ERROR

    importer = ArtifactImporter(project, project, LoggingNotifier(), api=api)
    ok = await importer.apply_artifact_to_selection(
        artifact_id,
        selection,
        project.tracks[track_index],
        artifact_bars=artifact_bars,
    )
    if not ok:
        error = importer.last_error
        typer.echo(f"❌ {error}")
        return int(error.exit_code) if error is not None else ExitCode.INTERNAL_ERROR

    output.write_bytes(project.to_bytes())
    typer.echo(
        f"✅ Bars {selection.start_bar}-{selection.end_bar} of track {track_index} → {output}"
    )
    return ExitCode.SUCCESS


@cli.command("apply")
def apply_cmd(
    artifact_id: str = typer.Argument(..., help="Artifact id to apply."),
    project: pathlib.Path = typer.Argument(..., help="Project MIDI file."),
    track: int = typer.Option(..., "--track", help="Zero-based index among note tracks."),
    from_bar: int = typer.Option(..., "--from-bar", help="First bar (1-based)."),
    to_bar: Optional[int] = typer.Option(None, "--to-bar", help="Last bar, inclusive."),
    artifact_bars: Optional[int] = typer.Option(
        None, "--artifact-bars", help="Artifact length in bars (default: estimated)."
    ),
    output: pathlib.Path = typer.Option(..., "--output", "-o", help="Where to write the result."),
) -> None:
    """Overwrite a bar range of a project with a generated artifact."""

    async def _core() -> int:
        return await _apply_async(
            api=get_api_client(),
            artifact_id=artifact_id,
            project_path=project,
            track_index=track,
            from_bar=from_bar,
            to_bar=to_bar,
            artifact_bars=artifact_bars,
            output=output,
        )

    _run(_core, "apply")


if __name__ == "__main__":
    cli()
