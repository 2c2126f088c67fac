"""Wire shapes exchanged with the generation backend."""

from bargen.contracts.json_types import (
    ArtifactItem,
    ChordsToMidisRequest,
    CreateSessionResponse,
    RefMidisMixSetRequest,
    RefMidiToMidiRequest,
    TaskStatusResponse,
    TaskSubmitResponse,
)

__all__ = [
    "ArtifactItem",
    "ChordsToMidisRequest",
    "CreateSessionResponse",
    "RefMidisMixSetRequest",
    "RefMidiToMidiRequest",
    "TaskStatusResponse",
    "TaskSubmitResponse",
]
