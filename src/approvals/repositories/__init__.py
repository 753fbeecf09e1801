"""Repository layer - data access abstraction."""

from src.approvals.repositories.base import BaseRepository
from src.approvals.repositories.instance_repository import (
    InstanceRepository,
    ParallelExecutionRepository,
    PendingDataRepository,
    StepExecutionRepository,
)
from src.approvals.repositories.workflow_repository import (
    AssigneeRepository,
    ExemptionRepository,
    StepRepository,
    TransitionRepository,
    WorkflowRepository,
)

__all__ = [
    # Base
    "BaseRepository",
    # Definitions
    "AssigneeRepository",
    "ExemptionRepository",
    "StepRepository",
    "TransitionRepository",
    "WorkflowRepository",
    # Runtime
    "InstanceRepository",
    "ParallelExecutionRepository",
    "PendingDataRepository",
    "StepExecutionRepository",
]
