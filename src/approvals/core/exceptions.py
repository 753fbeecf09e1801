"""Workflow error hierarchy.

Business errors subclass ValueError so services can roll back on
``except ValueError`` and re-raise to the caller. Parameter resolution
failures are programming errors and subclass TypeError instead.
"""

from collections.abc import Iterable
from uuid import UUID


class WorkflowError(ValueError):
    """Base class for caller-visible workflow errors."""


class WorkflowNotFoundError(WorkflowError):
    """No workflow (or instance) matches the lookup."""


class InstanceNotPendingError(WorkflowError):
    def __init__(self, instance_id: UUID | None, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow instance {instance_id} is not pending (status: {status})")


class NotAuthorizedError(WorkflowError):
    def __init__(self, step_label: str):
        self.step_label = step_label
        super().__init__(f"User is not authorized to execute step '{step_label}'")


class InvalidTransitionError(WorkflowError):
    def __init__(self, from_label: str | None, to_label: str):
        self.from_label = from_label
        self.to_label = to_label
        super().__init__(f"Invalid transition from '{from_label}' to '{to_label}'")


class HookBlockedError(WorkflowError):
    """A before-hook vetoed the operation."""

    def __init__(self, hook: str = "before_transition_to", target: str | None = None):
        self.hook = hook
        self.target = target
        message = f"Transition blocked by {hook} hook"
        if target:
            message += f" (target step '{target}')"
        super().__init__(message)


class StepNotFoundError(WorkflowError):
    """A step reference could not be resolved inside its workflow."""


class BypassConfigurationError(WorkflowError):
    """The workflow's bypass mode cannot be applied to its step graph."""


class UnresolvableParameterError(TypeError):
    """A hook callback declares a parameter none of the available values can fill."""

    def __init__(self, parameter: str, callback_name: str, available: Iterable[str]):
        self.parameter = parameter
        self.callback_name = callback_name
        self.available = sorted(available)
        keys = ", ".join(self.available) or "none"
        super().__init__(
            f"Unable to resolve parameter '{parameter}' for {callback_name}. Available keys: {keys}"
        )
