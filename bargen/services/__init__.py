"""Services for bargen."""
from __future__ import annotations

from bargen.services.api_client import ApiClient, close_api_client, get_api_client
from bargen.services.artifact_import import ArtifactImporter
from bargen.services.orchestrator import TaskOrchestrator

__all__ = [
    "ApiClient",
    "ArtifactImporter",
    "TaskOrchestrator",
    "close_api_client",
    "get_api_client",
]
