"""Shared enums for models."""

from enum import Enum


class InstanceStatus(str, Enum):
    """Lifecycle status of a workflow instance."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"


class StepDecision(str, Enum):
    """Decision an actor takes when executing a step."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_EDIT = "request_edit"
    CANCEL = "cancel"

    @property
    def terminates(self) -> bool:
        """Reject and cancel end the instance without applying its data."""
        return self in (StepDecision.REJECT, StepDecision.CANCEL)


# Decision recorded on executions synthesized by bypass resolution
AUTO_APPROVED_DECISION = "auto_approved"


class BypassMode(str, Enum):
    """How a workflow is skipped for an exempt actor."""

    MANUAL = "manual"  # Apply directly, no instance
    DIRECT_COMPLETE = "direct_complete"  # Jump straight to the final step
    AUTO_FOLLOW = "auto_follow"  # Walk the linear chain to the final step
    CUSTOM_STEPS = "custom_steps"  # Walk an explicit list of step keys


class ParallelStatus(str, Enum):
    """Status of one branch of a parallel fork."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    JOINED = "joined"

    @property
    def is_terminal(self) -> bool:
        return self in (ParallelStatus.COMPLETED, ParallelStatus.FAILED, ParallelStatus.JOINED)


class ActionStatus(str, Enum):
    """Outcome tag of an auto-executed step."""

    SUCCESS = "success"
    FAILED = "failed"
    WAITING = "waiting"
    FORKED = "forked"
    ROUTE_TO = "route_to"


class WorkflowEvent(str, Enum):
    """Lifecycle notifications emitted by the engine."""

    TRIGGERED = "triggered"
    STEP_EXECUTED = "step_executed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    AUTO_APPROVED = "auto_approved"
