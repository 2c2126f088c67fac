"""Task, artifact and session records held by the task store.

States:
    QUEUED    — Task registered at submit time; nothing heard from the backend yet
    RUNNING   — Backend reports the job in progress
    SUCCEEDED — Terminal; ``artifacts`` holds the generated files
    FAILED    — Terminal; ``error`` holds the backend's message
    CANCELED  — Terminal; no artifacts

Terminal tasks are only ever touched again by store bookkeeping
(``updated_at``, active/selected pointers).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskKind(str, Enum):
    """Backend job kinds; values double as the submit endpoint suffix."""

    CHORDS_TO_MIDIS = "chords_to_midis"
    REF_MIDI_TO_MIDI = "ref_midi_to_midi"
    REF_MIDIS_MIX_SET = "ref_midis_mix_set"


class TaskStatus(str, Enum):
    """Backend job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: str) -> "TaskStatus":
        """Map a wire status onto the enum.

        Unknown values are treated as ``RUNNING`` so an unexpected status
        keeps the task polling instead of silently terminating it.
        """
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"Unknown task status {value!r}; treating as running")
            return cls.RUNNING


TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset({
    TaskStatus.SUCCEEDED,
    TaskStatus.FAILED,
    TaskStatus.CANCELED,
})


class Instrument(str, Enum):
    """Instrument tags understood by the backend's ``inst`` field."""

    PIANO = "piano"
    GUITAR = "guitar"
    BASS = "bass"

    @classmethod
    def coerce(cls, value: "str | Instrument | None") -> "Instrument | None":
        """Return the enum member for *value*, or None when it is not an instrument."""
        if value is None or isinstance(value, Instrument):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class Artifact:
    """One generated file. Replaced wholesale, never edited in place."""

    artifact_id: str
    kind: str
    filename: str
    url: str


@dataclass
class Task:
    """A submitted generation job as last reported by the backend."""

    task_id: str
    session_id: str | None = None
    kind: str | None = None
    status: TaskStatus = TaskStatus.QUEUED
    error: str | None = None
    artifacts: tuple[Artifact, ...] = ()
    instrument: Instrument | None = None
    input_bars: int | None = None
    input_chords: tuple[str, ...] | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def get_artifact(self, artifact_id: str) -> Artifact | None:
        """Get an artifact by ID."""
        for artifact in self.artifacts:
            if artifact.artifact_id == artifact_id:
                return artifact
        return None


@dataclass(frozen=True)
class ArtifactOpState:
    """Transient progress flags for a download/import of one artifact."""

    downloading: bool = False
    importing: bool = False
    error: str | None = None

    @property
    def busy(self) -> bool:
        return self.downloading or self.importing


class SessionStatus(str, Enum):
    IDLE = "idle"
    CREATING = "creating"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class SessionState:
    """Snapshot of the process-wide backend session."""

    id: str | None = None
    status: SessionStatus = SessionStatus.IDLE
    error: str | None = None
