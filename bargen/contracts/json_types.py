"""Wire shapes exchanged with the generation backend.

This module is the single source of truth for every JSON body bargen sends
or receives.  The backend speaks snake_case; so does this module.  Domain
objects (``bargen.models``) are built from these dicts at exactly one
boundary: ``bargen.core.poller`` for task status and
``bargen.services.orchestrator`` for submit responses.

## Entity catalog

Responses:
  CreateSessionResponse — POST /sessions
  TaskSubmitResponse    — POST /tasks/<kind>
  ArtifactItem          — one entry of a task's ``artifacts`` list
  TaskStatusResponse    — GET /tasks/{task_id}

Requests:
  ChordsToMidisRequest  — JSON body of POST /tasks/chords_to_midis
  RefMidiToMidiRequest  — multipart fields of POST /tasks/ref_midi_to_midi
  RefMidisMixSetRequest — multipart fields of POST /tasks/ref_midis_mix_set
"""
from __future__ import annotations

from typing_extensions import NotRequired, TypedDict

JSONScalar = str | int | float | bool | None


class CreateSessionResponse(TypedDict):
    """Body returned by ``POST /sessions``."""

    session_id: str


class TaskSubmitResponse(TypedDict):
    """Body returned by every submit endpoint.

    ``status_url`` is only guaranteed for the JSON (chords) endpoint.
    """

    task_id: str
    status_url: NotRequired[str]


class ArtifactItem(TypedDict):
    """One generated file attached to a task."""

    artifact_id: str
    kind: str
    filename: str
    url: str
    """Relative download path, e.g. ``/tasks/artifacts/content/<id>``."""


class TaskStatusResponse(TypedDict):
    """Body returned by ``GET /tasks/{task_id}``."""

    task_id: str
    session_id: str
    kind: str
    status: str
    error: NotRequired[JSONScalar | dict[str, object]]
    artifacts: NotRequired[list[ArtifactItem]]
    inst: NotRequired[str | None]


class _ChordsRequestBase(TypedDict):
    session_id: str
    chords: list[str]
    segmentation: str
    bpm: float | str


class ChordsToMidisRequest(_ChordsRequestBase, total=False):
    """JSON body of ``POST /tasks/chords_to_midis``."""

    chord_beats: list[int]
    n_midi: int
    inst: str


class RefMidiToMidiRequest(_ChordsRequestBase, total=False):
    """Fields of ``POST /tasks/ref_midi_to_midi`` (multipart).

    ``ref_midi`` holds the raw file bytes; ``ref_filename`` names the upload.
    """

    chord_beats: list[int]
    ref_midi: bytes
    ref_filename: str
    inst: str


class RefMidisMixSetRequest(_ChordsRequestBase, total=False):
    """Fields of ``POST /tasks/ref_midis_mix_set`` (multipart)."""

    chord_beats: list[int]
    alphas: list[float]
    midi_a: bytes
    midi_b: bytes
