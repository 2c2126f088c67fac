"""Domain records shared across bargen."""
from bargen.models.notes import BarRange, Measure, Note, NotePayload, ParsedMidi, TickRange
from bargen.models.tasks import (
    TERMINAL_STATUSES,
    Artifact,
    ArtifactOpState,
    Instrument,
    SessionState,
    SessionStatus,
    Task,
    TaskKind,
    TaskStatus,
)

__all__ = [
    "Artifact",
    "ArtifactOpState",
    "BarRange",
    "Instrument",
    "Measure",
    "Note",
    "NotePayload",
    "ParsedMidi",
    "SessionState",
    "SessionStatus",
    "TERMINAL_STATUSES",
    "Task",
    "TaskKind",
    "TaskStatus",
    "TickRange",
]
