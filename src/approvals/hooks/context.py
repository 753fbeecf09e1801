"""Context object handed to hooks and action handlers."""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.approvals.models import Instance, Step, StepExecution, Workflow

if TYPE_CHECKING:
    from src.approvals.services.engine import WorkflowEngine

VARIABLES_META_KEY = "variables"


@dataclass
class WorkflowContext:
    """Everything known about one transition of one instance.

    ``data`` is the pending payload. ``variables`` is the instance's
    working context: values written by handlers (join results, decision
    outputs) that later steps and placeholders can read. It is persisted
    in the instance metadata.
    """

    instance: Instance
    workflow: Workflow | None = None
    actor: Any = None
    target_step: Step | None = None
    source_step: Step | None = None
    decision: str | None = None
    note: str | None = None
    execution: StepExecution | None = None
    data: dict[str, Any] = field(default_factory=dict)
    target: Any = None
    bypassed: bool = False
    variables: dict[str, Any] = field(default_factory=dict)

    # Execution services, available to action handlers
    session: AsyncSession | None = field(default=None, repr=False, compare=False)
    engine: "WorkflowEngine | None" = field(default=None, repr=False, compare=False)

    @property
    def topic(self) -> str | None:
        return self.workflow.topic if self.workflow else None

    @property
    def action(self) -> str | None:
        return self.workflow.action if self.workflow else None

    @property
    def user(self) -> Any:
        return self.actor

    @property
    def step(self) -> Step | None:
        return self.target_step

    def is_bypassed(self) -> bool:
        return self.bypassed

    def get(self, key: str, default: Any = None) -> Any:
        return self.variables.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a working-context value on the context and the instance."""
        self.variables[key] = value
        self.instance.set_meta(VARIABLES_META_KEY, dict(self.variables))

    def moving(self, target_step: Step | None, source_step: Step | None = None, **changes: Any) -> "WorkflowContext":
        """Copy of this context for a transition into ``target_step``."""
        return replace(self, target_step=target_step, source_step=source_step, **changes)

    def parameters(self) -> dict[str, Any]:
        """The named bag hook callbacks are resolved against."""
        return {
            "ctx": self,
            "context": self,
            "instance": self.instance,
            "workflow": self.workflow,
            "step": self.target_step,
            "target_step": self.target_step,
            "source_step": self.source_step,
            "decision": self.decision,
            "user": self.actor,
            "actor": self.actor,
            "execution": self.execution,
            "note": self.note,
            "data": self.data,
            "model": self.target,
            "target": self.target,
            "variables": self.variables,
        }
