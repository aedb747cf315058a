"""Application layer: supervision, integration and lifecycle control."""

from symphony.application.agent_supervisor import AgentObservation, AgentSupervisor
from symphony.application.engine import SymphonyEngine, create_controller
from symphony.application.integration_resolver import (
    IntegrationResolver,
    StageResult,
    VerificationRunner,
    reconcile,
)
from symphony.application.task_controller import StatusSnapshot, TaskController

__all__ = [
    "AgentObservation",
    "AgentSupervisor",
    "IntegrationResolver",
    "StageResult",
    "StatusSnapshot",
    "SymphonyEngine",
    "TaskController",
    "VerificationRunner",
    "create_controller",
    "reconcile",
]
