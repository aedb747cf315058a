"""Collaborator interfaces consumed by the orchestration engine."""

from symphony.domain.ports.impact_analyzer import ImpactAnalyzer
from symphony.domain.ports.worker_session import WorkerHandle, WorkerSessionProvider
from symphony.domain.ports.workspace_provider import (
    CherryPickOutcome,
    CommitInfo,
    WorkspaceProvider,
)

__all__ = [
    "CherryPickOutcome",
    "CommitInfo",
    "ImpactAnalyzer",
    "WorkerHandle",
    "WorkerSessionProvider",
    "WorkspaceProvider",
]
