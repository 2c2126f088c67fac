"""Tests for the bargen Typer CLI.

The backend is the ``api`` AsyncMock fixture patched in at
``bargen.cli.get_api_client``; commands run synchronously through
``CliRunner`` exactly as the console script would.
"""
from __future__ import annotations

import pathlib
from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from bargen.cli import cli
from bargen.core.midi_io import parse_midi_first_track
from bargen.errors import ApiError, ExitCode

runner = CliRunner()


def _invoke(api: MagicMock, *args: str):
    with patch("bargen.cli.get_api_client", return_value=api):
        return runner.invoke(cli, list(args))


class TestChords:

    def test_no_wait_prints_task_id(self, api: MagicMock) -> None:
        result = _invoke(api, "chords", "C", "G", "--bpm", "100", "--no-wait")

        assert result.exit_code == 0, result.output
        assert "Submitted chords_to_midis: task-1" in result.output
        body = api.submit_chords_to_midis.await_args.args[0]
        assert body["segmentation"] == "A2"
        assert body["bpm"] == "100.00"
        assert body["inst"] == "piano"
        api.get_task.assert_not_awaited()

    def test_waits_and_saves_artifacts(self, api: MagicMock, tmp_path: pathlib.Path) -> None:
        api.get_task.return_value = {
            "task_id": "task-1",
            "status": "succeeded",
            "artifacts": [
                {"artifact_id": "a1", "kind": "midi", "filename": "out_1.mid", "url": "/tasks/artifacts/content/a1"},
            ],
        }
        api.download_artifact_by_url.return_value = b"MThd-bytes"
        out = tmp_path / "gen"

        result = _invoke(api, "chords", "C", "--inst", "bass", "--out", str(out), "--timeout", "5")

        assert result.exit_code == 0, result.output
        assert "Task task-1: succeeded" in result.output
        assert (out / "out_1.mid").read_bytes() == b"MThd-bytes"

    def test_failed_task_exits_internal_error(self, api: MagicMock) -> None:
        api.get_task.return_value = {"task_id": "task-1", "status": "failed", "error": "model crashed"}

        result = _invoke(api, "chords", "C", "--timeout", "5")

        assert result.exit_code == ExitCode.INTERNAL_ERROR
        assert "error: model crashed" in result.output

    def test_chord_count_mismatch_is_user_error(self, api: MagicMock) -> None:
        result = _invoke(api, "chords", "C", "G", "--bars", "3", "--no-wait")

        assert result.exit_code == ExitCode.USER_ERROR
        assert "Chord count (2) must match bar count (3)." in result.output
        api.create_session.assert_not_awaited()

    def test_unknown_instrument_is_rejected(self, api: MagicMock) -> None:
        result = _invoke(api, "chords", "C", "--inst", "drums", "--no-wait")
        assert result.exit_code == 2
        api.submit_chords_to_midis.assert_not_awaited()

    def test_backend_down_exits_internal_error(self, api: MagicMock) -> None:
        api.create_session.side_effect = ApiError("HTTP 503 Service Unavailable: down", status_code=503)

        result = _invoke(api, "chords", "C", "--no-wait")

        assert result.exit_code == ExitCode.INTERNAL_ERROR
        assert "Could not create session" in result.output


class TestReferenceJobs:

    def test_ref_uploads_file(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        ref = tmp_path / "riff.mid"
        ref.write_bytes(midi_factory([(0, 480, 60)]))

        result = _invoke(api, "ref", str(ref), "-c", "C", "-c", "F", "--no-wait")

        assert result.exit_code == 0, result.output
        body = api.submit_ref_midi_to_midi.await_args.args[0]
        assert body["ref_filename"] == "riff.mid"
        assert body["ref_midi"] == ref.read_bytes()
        assert body["segmentation"] == "A2"

    def test_ref_missing_file(self, api: MagicMock, tmp_path: pathlib.Path) -> None:
        result = _invoke(api, "ref", str(tmp_path / "nope.mid"), "-c", "C")
        assert result.exit_code == ExitCode.USER_ERROR
        assert "No such file" in result.output

    def test_mix_passes_alphas(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        a, b = tmp_path / "a.mid", tmp_path / "b.mid"
        a.write_bytes(midi_factory([(0, 480, 60)]))
        b.write_bytes(midi_factory([(0, 480, 67)]))

        result = _invoke(api, "mix", str(a), str(b), "-c", "C", "--alpha", "0.3", "--alpha", "0.6", "--no-wait")

        assert result.exit_code == 0, result.output
        assert api.submit_ref_midis_mix_set.await_args.args[0]["alphas"] == [0.3, 0.6]

    def test_mix_rejects_out_of_range_alpha(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        a = tmp_path / "a.mid"
        a.write_bytes(midi_factory([(0, 480, 60)]))

        result = _invoke(api, "mix", str(a), str(a), "-c", "C", "--alpha", "1.5", "--no-wait")

        assert result.exit_code == ExitCode.USER_ERROR
        assert "Mix weights must be within [0, 1]" in result.output


class TestProjectSelections:

    def _project(self, tmp_path: pathlib.Path, midi_factory) -> pathlib.Path:
        project = tmp_path / "song.mid"
        project.write_bytes(midi_factory([(0, 480, 50), (1920, 480, 60), (3840, 960, 70)]))
        return project

    def test_ref_from_project_bars(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        project = self._project(tmp_path, midi_factory)

        result = _invoke(
            api, "ref", "--from-project", str(project), "--track", "0", "--selection", "2..3",
            "-c", "C", "-c", "G", "--no-wait",
        )

        assert result.exit_code == 0, result.output
        body = api.submit_ref_midi_to_midi.await_args.args[0]
        assert body["ref_filename"] == "song_bars2-3.mid"
        notes = parse_midi_first_track(body["ref_midi"]).payload.notes
        assert [(n.tick, n.duration, n.note_number) for n in notes] == [(0, 480, 60), (1920, 960, 70)]

    def test_mix_takes_clip_a_from_project(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        project = self._project(tmp_path, midi_factory)
        b = tmp_path / "b.mid"
        b.write_bytes(midi_factory([(0, 480, 67)]))

        result = _invoke(
            api, "mix", str(b), "--from-project", str(project), "--a-selection", "1",
            "-c", "C", "--no-wait",
        )

        assert result.exit_code == 0, result.output
        body = api.submit_ref_midis_mix_set.await_args.args[0]
        assert [n.note_number for n in parse_midi_first_track(body["midi_a"]).payload.notes] == [50]
        assert body["midi_b"] == b.read_bytes()

    def test_empty_selection_is_user_error(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        project = tmp_path / "song.mid"
        project.write_bytes(midi_factory([(0, 480, 50)]))

        result = _invoke(api, "ref", "--from-project", str(project), "--selection", "4..5", "-c", "C", "-c", "F")

        assert result.exit_code == ExitCode.USER_ERROR
        assert "The selected range has no notes." in result.output
        api.submit_ref_midi_to_midi.assert_not_awaited()

    def test_selection_without_project(self, api: MagicMock) -> None:
        result = _invoke(api, "ref", "--selection", "1..2", "-c", "C")
        assert result.exit_code == ExitCode.USER_ERROR
        assert "needs --from-project" in result.output

    def test_file_and_selection_conflict(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        project = self._project(tmp_path, midi_factory)

        result = _invoke(api, "ref", str(project), "--from-project", str(project), "--selection", "1", "-c", "C")

        assert result.exit_code == ExitCode.USER_ERROR
        assert "Unused MIDI file(s)" in result.output

    def test_ref_needs_a_source(self, api: MagicMock) -> None:
        result = _invoke(api, "ref", "-c", "C")
        assert result.exit_code == ExitCode.USER_ERROR
        assert "give a MIDI file" in result.output

    def test_bad_bar_syntax(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        project = self._project(tmp_path, midi_factory)
        result = _invoke(api, "ref", "--from-project", str(project), "--selection", "one..two", "-c", "C")
        assert result.exit_code == 2
        api.submit_ref_midi_to_midi.assert_not_awaited()


class TestInspection:

    def test_status_prints_json(self, api: MagicMock) -> None:
        api.get_task.return_value = {"task_id": "t-9", "status": "running", "artifacts": []}

        result = _invoke(api, "status", "t-9")

        assert result.exit_code == 0, result.output
        assert '"status": "running"' in result.output
        api.get_task.assert_awaited_once_with("t-9")

    def test_download_writes_file(self, api: MagicMock, tmp_path: pathlib.Path) -> None:
        api.download_artifact.return_value = b"MThd\x00"
        dest = tmp_path / "sub" / "a1.mid"

        result = _invoke(api, "download", "a1", "-o", str(dest))

        assert result.exit_code == 0, result.output
        assert dest.read_bytes() == b"MThd\x00"

    def test_download_http_error(self, api: MagicMock, tmp_path: pathlib.Path) -> None:
        api.download_artifact.side_effect = ApiError("HTTP 404 Not Found: gone", status_code=404)
        result = _invoke(api, "download", "a1", "-o", str(tmp_path / "x.mid"))
        assert result.exit_code == ExitCode.INTERNAL_ERROR
        assert "HTTP 404 Not Found: gone" in result.output


class TestApply:

    def test_tiles_artifact_into_project(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        project = tmp_path / "song.mid"
        project.write_bytes(midi_factory([(0, 480, 50), (4 * 1920, 480, 70)]))
        api.download_artifact.return_value = midi_factory([(0, 480, 60)])
        out = tmp_path / "song_out.mid"

        result = _invoke(
            api, "apply", "a1", str(project),
            "--track", "0", "--from-bar", "1", "--to-bar", "2", "--artifact-bars", "1", "-o", str(out),
        )

        assert result.exit_code == 0, result.output
        notes = parse_midi_first_track(out.read_bytes()).payload.notes
        assert [(n.tick, n.note_number) for n in notes] == [(0, 60), (1920, 60), (7680, 70)]

    def test_track_out_of_range(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        project = tmp_path / "song.mid"
        project.write_bytes(midi_factory([(0, 480, 50)]))

        result = _invoke(
            api, "apply", "a1", str(project), "--track", "3", "--from-bar", "1", "-o", str(tmp_path / "o.mid"),
        )

        assert result.exit_code == ExitCode.USER_ERROR
        api.download_artifact.assert_not_awaited()

    def test_empty_artifact_is_user_error(self, api: MagicMock, tmp_path: pathlib.Path, midi_factory) -> None:
        project = tmp_path / "song.mid"
        project.write_bytes(midi_factory([(0, 480, 50)]))
        api.download_artifact.return_value = midi_factory([])
        out = tmp_path / "o.mid"

        result = _invoke(api, "apply", "a1", str(project), "--track", "0", "--from-bar", "1", "-o", str(out))

        assert result.exit_code == ExitCode.USER_ERROR
        assert "MIDI has no importable note events" in result.output
        assert not out.exists()


def test_no_args_shows_help() -> None:
    result = runner.invoke(cli, [])
    assert "chords" in result.output
