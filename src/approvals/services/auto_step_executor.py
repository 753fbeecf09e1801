"""Auto-step executor - runs handler-driven steps back to back.

When an instance lands on a step whose ``action_type`` is registered, the
executor runs the handler and acts on the result:

- success: follow the first outgoing transition, or complete at a final step
- route_to: jump to the named step (outgoing targets first, then any step)
- waiting: park the instance and hand the resume to the scheduler
- forked: start the parallel branches of the group
- failed: halt, or follow the step's ``on_error_route``

The chain stops at a manual step, a final step, a suspension, or after
``auto_chain_max_length`` hops.
"""

import json
from typing import TYPE_CHECKING, Any
from uuid import UUID

from src.approvals.actions.result import ActionResult
from src.approvals.core.config import get_settings
from src.approvals.core.exceptions import HookBlockedError
from src.approvals.core.logging import bind_instance_context, get_logger
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import WAITING_META_KEY, ActionStatus, Step, WorkflowEvent
from src.approvals.models.base import parse_utc, utc_now

if TYPE_CHECKING:
    from src.approvals.services.engine import WorkflowEngine

logger = get_logger(__name__)

AUTO_EXECUTED_DECISION = "auto_executed"


def _execution_note(result: ActionResult) -> str | None:
    payload = dict(result.data)
    if result.error:
        payload["error"] = result.error
    return json.dumps(payload, default=str) if payload else None


class AutoStepExecutor:
    def __init__(self, engine: "WorkflowEngine"):
        self.engine = engine
        self.max_chain_length = get_settings().auto_chain_max_length

    async def run_chain(self, ctx: WorkflowContext, step: Step, entered: bool = False) -> ActionResult:
        """Execute ``step`` and every auto step it leads to.

        Args:
            ctx: Context of the instance; ``ctx.source_step`` is where it came from.
            step: The auto-executable step the instance just landed on.
            entered: True when the caller already ran the before-transition
                hooks for ``step``.

        Returns:
            The result of the last executed step.
        """
        current = ctx.moving(step, ctx.source_step)
        hops = 0
        while True:
            if hops >= self.max_chain_length:
                logger.warning(
                    "Auto-execution chain limit reached",
                    limit=self.max_chain_length,
                    step=current.target_step.key if current.target_step else None,
                )
                return ActionResult.failed(f"Auto-execution chain exceeded {self.max_chain_length} steps")

            result, following = await self.execute(current, before_hooks=not (entered and hops == 0))
            hops += 1
            if following is None:
                return result
            current = following

    async def execute(
        self, ctx: WorkflowContext, before_hooks: bool = True
    ) -> tuple[ActionResult, WorkflowContext | None]:
        """Run the handler of ``ctx.target_step`` once.

        Returns:
            The handler result and, when the chain should go on, the context
            positioned on the next auto-executable step.
        """
        engine = self.engine
        instance = ctx.instance
        step = ctx.target_step
        if step is None or not engine.actions.is_auto(step):
            return ActionResult.failed(
                "Step is not auto-executable", {"action_type": step.action_type if step else None}
            ), None
        if not instance.is_pending:
            return ActionResult.failed("Workflow instance is no longer pending"), None

        ctx = ctx.moving(
            step,
            ctx.source_step,
            decision=AUTO_EXECUTED_DECISION,
            note=f"Auto-executed by {step.action_type} handler",
        )
        if before_hooks:
            try:
                await engine.run_before_transition_hooks(ctx, step)
            except HookBlockedError as e:
                logger.info("Auto step blocked by hook", step=step.key, hook=e.hook)
                return ActionResult.failed(str(e)), None

        result = await engine.actions.execute(step, ctx)
        ctx.execution = await engine.record_execution(
            instance,
            step,
            result.status.value,
            actor=ctx.actor,
            note=_execution_note(result),
            duration=0,
        )
        logger.info("Auto step executed", step=step.key, action_type=step.action_type, status=result.status.value)

        await engine.run_after_transition_hooks(ctx, step)
        await engine.emit(WorkflowEvent.STEP_EXECUTED, ctx)

        return await self.handle_result(result, ctx, step)

    async def handle_result(
        self, result: ActionResult, ctx: WorkflowContext, step: Step
    ) -> tuple[ActionResult, WorkflowContext | None]:
        if result.status is ActionStatus.SUCCESS:
            return await self._handle_success(result, ctx, step)
        if result.status is ActionStatus.ROUTE_TO:
            return await self._handle_routing(result, ctx, step)
        if result.status is ActionStatus.WAITING:
            await self._handle_waiting(result, ctx, step)
            return result, None
        if result.status is ActionStatus.FORKED:
            await self._handle_forked(result, ctx, step)
            return result, None
        return await self._handle_failure(result, ctx, step)

    async def _handle_success(
        self, result: ActionResult, ctx: WorkflowContext, step: Step
    ) -> tuple[ActionResult, WorkflowContext | None]:
        targets = await self.engine.transition_repo.list_targets(step.id)
        if not targets:
            if step.is_final:
                await self.engine.complete(ctx)
                return result, None
            logger.warning("Auto step has no next step", step=step.key)
            return ActionResult.failed("No next step available and step is not final", result.data), None
        return result, await self.transition_to(ctx, step, targets[0])

    async def _handle_routing(
        self, result: ActionResult, ctx: WorkflowContext, step: Step
    ) -> tuple[ActionResult, WorkflowContext | None]:
        target = await self.find_route_target(step, result.route)
        if target is None:
            logger.warning("Route target not found", step=step.key, route=result.route)
            return ActionResult.failed(f"Target step '{result.route}' not found", result.data), None
        logger.info("Auto step routed", step=step.key, route=target.key)
        return result, await self.transition_to(ctx, step, target)

    async def _handle_waiting(self, result: ActionResult, ctx: WorkflowContext, step: Step) -> None:
        engine = self.engine
        instance = ctx.instance
        resume_at = parse_utc(result.data.get("resume_at"))

        waiting: dict[str, Any] = {
            key: value for key, value in result.data.items() if isinstance(value, (str, int, float, bool))
        }
        waiting.update(
            {
                "step_id": str(step.id),
                "waiting_for": result.data.get("waiting_for") or step.action_type,
                "waiting_at": utc_now().isoformat(),
                "resume_at": resume_at.isoformat() if resume_at else None,
            }
        )
        instance.set_meta(WAITING_META_KEY, waiting)
        engine.instance_repo.add(instance)
        logger.info("Auto step waiting", step=step.key, waiting_for=waiting["waiting_for"], resume_at=waiting["resume_at"])

        if resume_at is None:
            return
        if engine.scheduler is None:
            logger.warning("No scheduler configured, waiting step needs a manual resume", step=step.key)
            return

        scheduler = engine.scheduler
        instance_id, step_id = instance.id, step.id

        async def schedule() -> None:
            accepted = await scheduler.schedule_resume(instance_id, step_id, resume_at)
            if not accepted:
                logger.error("Scheduler rejected resume", instance_id=str(instance_id), step_id=str(step_id))

        engine.defer(schedule)

    async def _handle_forked(self, result: ActionResult, ctx: WorkflowContext, step: Step) -> None:
        group_id = result.data.get("group_id")
        ctx.instance.set_meta(
            WAITING_META_KEY,
            {
                "step_id": str(step.id),
                "waiting_for": "parallel",
                "group_id": group_id,
                "waiting_at": utc_now().isoformat(),
                "resume_at": None,
            },
        )
        logger.info("Auto step forked", step=step.key, group_id=group_id, branches=result.data.get("branch_count"))
        await self.engine.parallel.start_branches(ctx, step, group_id)

    async def _handle_failure(
        self, result: ActionResult, ctx: WorkflowContext, step: Step
    ) -> tuple[ActionResult, WorkflowContext | None]:
        logger.error("Auto step failed", step=step.key, action_type=step.action_type, error=result.error)
        ctx.instance.set_meta(
            "last_error",
            {"step_id": str(step.id), "error": result.error, "failed_at": utc_now().isoformat()},
        )

        error_route = step.config.get("on_error_route")
        if not error_route:
            return result, None

        target = await self.find_route_target(step, error_route)
        if target is None:
            logger.warning("Error route target not found", step=step.key, route=error_route)
            return result, None
        routed = ActionResult.route_to(error_route, {"original_error": result.error})
        return routed, await self.transition_to(ctx, step, target)

    async def find_route_target(self, step: Step, key: str | None) -> Step | None:
        """Resolve a route key among the step's targets, then anywhere in the workflow."""
        if not key:
            return None
        for target in await self.engine.transition_repo.list_targets(step.id):
            if target.key == key:
                return target
        return await self.engine.step_repo.get_by_key(step.workflow_id, key)

    async def transition_to(self, ctx: WorkflowContext, source: Step, target: Step) -> WorkflowContext | None:
        """Move the instance to ``target``; returns the context to continue with when it is auto."""
        moved = ctx.moving(target, source)
        await self.engine.activate_step(moved, source, target)

        if self.engine.actions.is_auto(target):
            return moved
        if target.is_final:
            await self.engine.complete(moved)
            return None
        logger.info("Auto chain stopped at manual step", step=target.key)
        return None

    async def resume(self, instance_id: UUID, step_id: UUID) -> bool:
        """Continue an instance suspended on ``step_id``; stale signals return False."""
        engine = self.engine
        instance = await engine.instance_repo.get_for_update(instance_id)
        if instance is None or not instance.is_pending:
            logger.info("Resume discarded, instance not pending", instance_id=str(instance_id))
            return False

        waiting = instance.get_meta(WAITING_META_KEY) or {}
        if instance.current_step_id != step_id or waiting.get("step_id") != str(step_id):
            logger.info(
                "Resume discarded, instance no longer waiting on step",
                instance_id=str(instance_id),
                step_id=str(step_id),
            )
            return False

        step = await engine.step_repo.get_by_id(step_id)
        if step is None:
            return False

        bind_instance_context(instance.id, instance.workflow_id)
        instance.pop_meta(WAITING_META_KEY)
        engine.instance_repo.add(instance)
        logger.info("Resuming waiting step", step=step.key, waiting_for=waiting.get("waiting_for"))

        ctx = await engine.context_for(instance, actor=instance.triggered_by, target_step=step)
        targets = await engine.transition_repo.list_targets(step.id)
        if not targets:
            if step.is_final:
                await engine.complete(ctx)
            else:
                logger.warning("Resumed step has no next step", step=step.key)
            return True

        following = await self.transition_to(ctx, step, targets[0])
        if following is not None and following.target_step is not None:
            await self.run_chain(following, following.target_step)
        return True
