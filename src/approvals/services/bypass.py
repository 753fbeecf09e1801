"""Bypass resolution for exempt actors."""

from typing import TYPE_CHECKING, Any

from src.approvals.core.exceptions import BypassConfigurationError
from src.approvals.core.logging import get_logger
from src.approvals.models import AUTO_APPROVED_DECISION, BypassMode, Instance, Step, Workflow, WorkflowEvent

if TYPE_CHECKING:
    from src.approvals.services.engine import AppliedResult, WorkflowEngine

logger = get_logger(__name__)


class BypassResolver:
    """Skips step-by-step approval according to the workflow's ``bypass_mode``.

    Every mode except ``manual`` still creates an instance and records one
    bypassed StepExecution per step it walks, so the audit trail shows what
    was skipped. Configuration is validated before anything is written.
    """

    def __init__(self, engine: "WorkflowEngine"):
        self.engine = engine

    async def resolve(
        self,
        workflow: Workflow,
        payload: dict[str, Any],
        actor: Any,
        target: Any = None,
        original: dict[str, Any] | None = None,
    ) -> "Instance | AppliedResult":
        mode = BypassMode(workflow.bypass_mode or BypassMode.MANUAL.value)

        if mode is BypassMode.MANUAL:
            return await self.engine.apply_directly(
                workflow.topic, workflow.action, payload, actor, target, workflow=workflow, bypassed=True
            )

        if mode is BypassMode.DIRECT_COMPLETE:
            path = [await self.final_step(workflow)]
        elif mode is BypassMode.AUTO_FOLLOW:
            path = await self.linear_path(workflow)
        else:
            path = await self.custom_path(workflow)

        return await self.walk(workflow, path, payload, actor, target, original)

    async def final_step(self, workflow: Workflow) -> Step:
        """The workflow's single final step."""
        finals = await self.engine.step_repo.list_final(workflow.id)
        if not finals:
            raise BypassConfigurationError(f"Workflow '{workflow.label}' has no final step")
        if len(finals) > 1:
            raise BypassConfigurationError(
                f"Workflow '{workflow.label}' has no final step to complete directly "
                f"({len(finals)} final steps, expected exactly one)"
            )
        return finals[0]

    async def linear_path(self, workflow: Workflow) -> list[Step]:
        """Steps visited walking the single outgoing edges from the entry to a final step.

        The entry step itself is only part of the path when it is final.
        """
        steps = await self.engine.step_repo.list_for_workflow(workflow.id)
        if not steps:
            raise BypassConfigurationError(f"Workflow '{workflow.label}' has no steps defined")

        by_id = {step.id: step for step in steps}
        outgoing: dict[Any, list[Step]] = {step.id: [] for step in steps}
        for transition in await self.engine.transition_repo.list_for_workflow(workflow.id):
            if transition.from_step_id in outgoing and transition.to_step_id in by_id:
                outgoing[transition.from_step_id].append(by_id[transition.to_step_id])

        for step in steps:
            if not step.is_final and len(outgoing[step.id]) > 1:
                raise BypassConfigurationError(
                    f"Workflow '{workflow.label}' has branching paths at step '{step.label}'; "
                    "auto_follow requires a linear workflow"
                )

        current = steps[0]
        if current.is_final:
            return [current]

        path: list[Step] = []
        visited = {current.id}
        while not current.is_final:
            successors = outgoing[current.id]
            if not successors or successors[0].id in visited:
                raise BypassConfigurationError(
                    f"Workflow '{workflow.label}' has no final step reachable from '{steps[0].label}'"
                )
            current = successors[0]
            visited.add(current.id)
            path.append(current)
        return path

    async def custom_path(self, workflow: Workflow) -> list[Step]:
        """The explicit ``bypass_steps`` list, resolved and validated."""
        keys = list(workflow.bypass_steps or [])
        if not keys:
            raise BypassConfigurationError(
                f"Workflow '{workflow.label}' has no steps defined for custom_steps bypass"
            )

        path: list[Step] = []
        for key in keys:
            step = await self.engine.step_repo.get_by_key(workflow.id, key)
            if step is None:
                raise BypassConfigurationError(f"Step '{key}' not found in workflow '{workflow.label}'")
            path.append(step)

        if not path[-1].is_final:
            raise BypassConfigurationError(f"Step '{keys[-1]}' must be a final step to end a custom_steps bypass")
        return path

    async def walk(
        self,
        workflow: Workflow,
        path: list[Step],
        payload: dict[str, Any],
        actor: Any,
        target: Any,
        original: dict[str, Any] | None,
    ) -> Instance:
        """Create an instance, record a bypassed execution per step of ``path``, then complete."""
        engine = self.engine
        instance, entry = await engine.create_instance(workflow, payload, actor, target, original)
        ctx = await engine.context_for(
            instance,
            workflow=workflow,
            actor=actor,
            target=target,
            data=payload,
            target_step=entry,
            bypassed=True,
            decision=AUTO_APPROVED_DECISION,
        )

        for hook in engine.hooks.trigger_hooks(workflow.topic, workflow.action, before=False):
            await engine.invoker.invoke(hook, ctx.parameters())
        await engine.emit(WorkflowEvent.TRIGGERED, ctx)

        previous = entry
        for step in path:
            moved = ctx.moving(step, previous if previous.id != step.id else None)
            await engine.run_before_transition_hooks(moved, step)
            moved.execution = await engine.record_execution(
                instance, step, AUTO_APPROVED_DECISION, actor=actor, bypassed=True, duration=0
            )
            await engine.activate_step(moved, moved.source_step, step)
            await engine.run_after_transition_hooks(moved, step)
            ctx = moved
            previous = step

        logger.info(
            "Workflow bypassed",
            workflow_id=str(workflow.id),
            bypass_mode=workflow.bypass_mode,
            steps=[step.key for step in path],
        )
        await engine.complete(ctx)
        return instance
