"""Pytest configuration and fixtures."""

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import pytest
from symphony.application.agent_supervisor import AgentSupervisor
from symphony.application.integration_resolver import IntegrationResolver, VerificationRunner
from symphony.application.task_controller import TaskController
from symphony.domain.models import LaneAssignment, ProgressReport, SubtaskStatus
from symphony.infrastructure.progress_parser import render_progress
from symphony.infrastructure.state_store import StateStore
from symphony.services.impact_analyzer import LaneKeywordImpactAnalyzer

from tests.fakes import FakeClock, FakeSessionProvider, FakeWorkspaceProvider


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    """State store rooted in a temporary .symphony directory."""
    return StateStore(tmp_path / ".symphony")


@pytest.fixture
def workspaces() -> FakeWorkspaceProvider:
    return FakeWorkspaceProvider()


@pytest.fixture
def sessions() -> FakeSessionProvider:
    return FakeSessionProvider()


@pytest.fixture
def lanes() -> LaneAssignment:
    return LaneAssignment(
        lanes={
            "backend-agent": ["src/api"],
            "frontend-agent": ["src/ui"],
        },
        shared=["src/shared"],
    )


@pytest.fixture
def supervisor(
    store: StateStore,
    workspaces: FakeWorkspaceProvider,
    sessions: FakeSessionProvider,
    clock: FakeClock,
) -> AgentSupervisor:
    return AgentSupervisor(
        store=store,
        workspaces=workspaces,
        sessions=sessions,
        agent_timeout=1800.0,
        max_attempts=3,
        clock=clock,
    )


@pytest.fixture
def integration(store: StateStore, workspaces: FakeWorkspaceProvider) -> IntegrationResolver:
    return IntegrationResolver(store=store, workspaces=workspaces, verifier=VerificationRunner(None))


@pytest.fixture
def controller(
    store: StateStore,
    supervisor: AgentSupervisor,
    integration: IntegrationResolver,
    lanes: LaneAssignment,
    clock: FakeClock,
) -> TaskController:
    return TaskController(
        store=store,
        supervisor=supervisor,
        integration=integration,
        lanes_provider=lambda: lanes,
        impact_analyzer=LaneKeywordImpactAnalyzer(),
        max_agents=4,
        max_test_attempts=3,
        clock=clock,
    )


@pytest.fixture
def report_progress(store: StateStore, clock: FakeClock) -> Callable[..., None]:
    """Write an agent's PROGRESS.md as the agent would."""

    def _report(
        task_id: str,
        role: str,
        status: SubtaskStatus = SubtaskStatus.IN_PROGRESS,
        progress: int = 50,
        current: str = "Working",
        at: datetime | None = None,
        blockers: list[str] | None = None,
    ) -> None:
        report = ProgressReport(
            status=status,
            progress=progress,
            current=current,
            last_updated=at or clock(),
            blockers=blockers or [],
        )
        store.write_text(store.progress_path(task_id, role), render_progress(report))

    return _report
