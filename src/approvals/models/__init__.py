"""Model exports - Lobby Pattern.

Import from here: `from src.approvals.models import Workflow, Instance`
"""

# Enums
from src.approvals.models.enums import (
    AUTO_APPROVED_DECISION,
    ActionStatus,
    BypassMode,
    InstanceStatus,
    ParallelStatus,
    StepDecision,
    WorkflowEvent,
)

# Runtime models
from src.approvals.models.instance import (
    PARALLEL_META_KEY,
    PARENT_META_KEY,
    SUB_WORKFLOWS_META_KEY,
    WAITING_META_KEY,
    Instance,
    ParallelExecution,
    PendingData,
    StepExecution,
)

# Definition models
from src.approvals.models.workflow import Assignee, Exemption, Step, Transition, Workflow

__all__ = [
    # Enums
    "AUTO_APPROVED_DECISION",
    "ActionStatus",
    "BypassMode",
    "InstanceStatus",
    "ParallelStatus",
    "StepDecision",
    "WorkflowEvent",
    # Definition models
    "Assignee",
    "Exemption",
    "Step",
    "Transition",
    "Workflow",
    # Runtime models
    "Instance",
    "ParallelExecution",
    "PendingData",
    "StepExecution",
    # Metadata keys
    "PARALLEL_META_KEY",
    "PARENT_META_KEY",
    "SUB_WORKFLOWS_META_KEY",
    "WAITING_META_KEY",
]
