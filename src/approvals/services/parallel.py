"""Parallel fork/join coordination.

A ``parallel`` step creates one ParallelExecution row per branch under a
shared group id and records the group in ``Instance.meta``. Branches then
move independently: auto branches run their handlers (inline or on a
worker), manual branches wait for ``complete_branch``. A branch ends when
it reaches a ``join`` step or runs out of transitions.

The join is an AND-barrier: it releases once every row of the group is
terminal (completed or failed). ``try_join`` re-checks that under the join
lock and the instance row lock, so the release happens exactly once.
"""

import json
from functools import partial
from typing import TYPE_CHECKING, Any
from uuid import UUID

from src.approvals.actions.result import ActionResult
from src.approvals.core.exceptions import (
    HookBlockedError,
    InstanceNotPendingError,
    NotAuthorizedError,
    WorkflowError,
)
from src.approvals.core.logging import bind_instance_context, get_logger
from src.approvals.hooks.context import WorkflowContext
from src.approvals.hooks.registry import HookKind
from src.approvals.models import (
    PARALLEL_META_KEY,
    WAITING_META_KEY,
    ActionStatus,
    Instance,
    ParallelExecution,
    ParallelStatus,
    Step,
    StepDecision,
)
from src.approvals.models.base import utc_now
from src.approvals.repositories import ParallelExecutionRepository

if TYPE_CHECKING:
    from src.approvals.services.engine import WorkflowEngine

logger = get_logger(__name__)

JOIN_ACTION_TYPE = "join"


class ParallelCoordinator:
    def __init__(self, engine: "WorkflowEngine"):
        self.engine = engine
        self.repo = ParallelExecutionRepository(engine.session)

    # Fork

    async def start_branches(self, ctx: WorkflowContext, fork_step: Step, group_id: str | None) -> None:
        """Activate every branch of a new group; auto branches are dispatched after commit."""
        if not group_id:
            raise WorkflowError(f"Parallel step '{fork_step.label}' did not produce a group id")

        engine = self.engine
        instance = ctx.instance
        for row in await self.repo.list_group(instance.id, group_id):
            step = await engine.step_repo.get_by_id(row.step_id)
            if step is None:
                continue
            moved = ctx.moving(step, fork_step)
            for hook in engine.hooks.step_hooks(HookKind.STEP_ACTIVATED, ctx.topic or "", ctx.action or "", step):
                await engine.invoker.invoke(hook, moved.parameters())

            if engine.actions.is_auto(step) and step.action_type != JOIN_ACTION_TYPE:
                engine.defer(partial(self.dispatch, instance.id, group_id, row.branch_key))

        logger.info("Parallel branches started", group_id=group_id, fork_step=fork_step.key)

    async def dispatch(self, instance_id: UUID, group_id: str, branch_key: str) -> None:
        """Hand an auto branch to the scheduler, or run it inline when there is none."""
        scheduler = self.engine.scheduler
        if scheduler is not None:
            if await scheduler.schedule_branch(instance_id, group_id, branch_key):
                return
            logger.warning("Scheduler rejected branch, running inline", group_id=group_id, branch=branch_key)
        await self.engine.run_branch(instance_id, group_id, branch_key)

    # Branches

    async def run_branch(self, instance_id: UUID, group_id: str, branch_key: str) -> bool:
        """Drive an auto branch as far as it goes.

        Returns:
            True when the branch reached a terminal status.
        """
        engine = self.engine
        instance = await engine.instance_repo.get_for_update(instance_id)
        if instance is None or not instance.is_pending:
            logger.info("Branch discarded, instance not pending", instance_id=str(instance_id), branch=branch_key)
            return False

        row = await self.repo.get_branch(instance_id, group_id, branch_key)
        if row is None or row.is_terminal:
            logger.info("Branch discarded, already finished", group_id=group_id, branch=branch_key)
            return False

        step = await engine.step_repo.get_by_id(row.step_id)
        if step is None:
            return await self._fail(row, f"Branch step {row.step_id} not found")

        bind_instance_context(instance.id, instance.workflow_id)
        row.status = ParallelStatus.RUNNING.value
        row.started_at = row.started_at or utc_now()
        self.repo.add(row)

        ctx = await engine.context_for(instance, actor=instance.triggered_by)
        fork_step = await self._fork_step(instance, group_id)
        return await self._advance(ctx.moving(step, fork_step), row)

    async def complete_branch(
        self,
        instance: Instance,
        group_id: str,
        branch_key: str,
        actor: Any = None,
        result: dict[str, Any] | None = None,
        failed: bool = False,
        note: str | None = None,
    ) -> bool:
        """Record a manual decision on the branch's current step.

        Raises:
            InstanceNotPendingError: The instance already concluded.
            WorkflowError: Unknown or already finished branch.
            NotAuthorizedError: ``actor`` may not act on the branch step.

        Returns:
            True when the branch reached a terminal status.
        """
        engine = self.engine
        if not instance.is_pending:
            raise InstanceNotPendingError(instance.id, instance.status)

        row = await self.repo.get_branch(instance.id, group_id, branch_key)
        if row is None:
            raise WorkflowError(f"Parallel branch '{branch_key}' not found in group '{group_id}'")
        if row.is_terminal:
            raise WorkflowError(f"Parallel branch '{branch_key}' already finished (status: {row.status})")

        step = await engine.step_repo.get_by_id(row.step_id)
        ctx = await engine.context_for(instance, actor=actor)
        if step is None or ctx.workflow is None:
            raise WorkflowError(f"Parallel branch '{branch_key}' has no step")
        bind_instance_context(instance.id, instance.workflow_id)

        if not await engine.validator.can_execute_step(ctx.workflow, instance, step, actor):
            raise NotAuthorizedError(step.label)

        decision = StepDecision.REJECT if failed else StepDecision.APPROVE
        ctx = ctx.moving(step, await self._fork_step(instance, group_id), decision=decision.value, note=note)
        ctx.execution = await engine.record_execution(instance, step, decision.value, actor=actor, note=note)
        row.started_at = row.started_at or utc_now()
        self._merge(row, result)

        if failed:
            return await self._fail(row, note or "Branch rejected")

        logger.info("Parallel branch step completed", group_id=group_id, branch=branch_key, step=step.key)
        following = await self._next_step(step, ActionResult.success())
        if following is None or following.action_type == JOIN_ACTION_TYPE:
            return await self._finish(instance, row, following)

        row.status = ParallelStatus.RUNNING.value
        return await self._advance(ctx.moving(following, step), row)

    async def _advance(self, ctx: WorkflowContext, row: ParallelExecution) -> bool:
        """Run auto steps of one branch until a join, a manual step or the end."""
        engine = self.engine
        instance = ctx.instance
        step = ctx.target_step
        hops = 0

        while step is not None:
            if step.action_type == JOIN_ACTION_TYPE:
                return await self._finish(instance, row, step)

            row.step_id = step.id
            if not engine.actions.is_auto(step):
                self.repo.add(row)
                logger.info("Parallel branch waiting on manual step", branch=row.branch_key, step=step.key)
                return False

            if hops >= engine.executor.max_chain_length:
                return await self._fail(row, f"Branch exceeded {engine.executor.max_chain_length} steps")
            hops += 1

            try:
                await engine.run_before_transition_hooks(ctx, step)
            except HookBlockedError as e:
                return await self._fail(row, str(e))

            result = await engine.actions.execute(step, ctx)
            ctx.execution = await engine.record_execution(
                instance,
                step,
                result.status.value,
                actor=ctx.actor,
                note=json.dumps(result.data, default=str) if result.data else result.error,
                duration=0,
            )
            await engine.run_after_transition_hooks(ctx, step)
            self._merge(row, result.data)

            if result.status is ActionStatus.FAILED:
                return await self._fail(row, result.error or "Branch step failed")
            if result.status in (ActionStatus.WAITING, ActionStatus.FORKED):
                return await self._fail(row, f"Parallel branches cannot suspend ({result.status.value})")

            following = await self._next_step(step, result)
            if following is None:
                if result.status is ActionStatus.ROUTE_TO:
                    return await self._fail(row, f"Target step '{result.route}' not found")
                return await self._finish(instance, row, None)
            ctx = ctx.moving(following, step)
            step = following

        return await self._finish(instance, row, None)

    async def _next_step(self, step: Step, result: ActionResult) -> Step | None:
        if result.status is ActionStatus.ROUTE_TO:
            return await self.engine.executor.find_route_target(step, result.route)
        targets = await self.engine.transition_repo.list_targets(step.id)
        return targets[0] if targets else None

    def _merge(self, row: ParallelExecution, data: dict[str, Any] | None) -> None:
        if data:
            row.result = {**(row.result or {}), **data}

    async def _finish(self, instance: Instance, row: ParallelExecution, join_step: Step | None) -> bool:
        row.status = ParallelStatus.COMPLETED.value
        row.completed_at = utc_now()
        self.repo.add(row)

        if join_step is not None:
            groups = instance.get_meta(PARALLEL_META_KEY, {}) or {}
            group = groups.get(row.group_id)
            if group is not None and group.get("join_step_id") != str(join_step.id):
                group["join_step_id"] = str(join_step.id)
                instance.set_meta(PARALLEL_META_KEY, groups)
                self.engine.instance_repo.add(instance)

        logger.info("Parallel branch completed", group_id=row.group_id, branch=row.branch_key)
        return True

    async def _fail(self, row: ParallelExecution, error: str) -> bool:
        row.status = ParallelStatus.FAILED.value
        row.error = error[:1000]
        row.completed_at = utc_now()
        self.repo.add(row)
        logger.warning("Parallel branch failed", group_id=row.group_id, branch=row.branch_key, error=error)
        return True

    # Join

    async def try_join(self, instance_id: UUID, group_id: str) -> bool:
        """Release the join if every branch of the group is terminal.

        Callers hold the join lock; the instance row lock taken here makes
        the re-check and the release atomic for this group.

        Returns:
            True if this call released the join.
        """
        engine = self.engine
        instance = await engine.instance_repo.get_for_update(instance_id)
        if instance is None or not instance.is_pending:
            return False

        group = (instance.get_meta(PARALLEL_META_KEY, {}) or {}).get(group_id)
        if group is None:
            logger.debug("Join skipped, group already joined", group_id=group_id)
            return False

        rows = await self.repo.list_group(instance_id, group_id)
        pending = [row.branch_key for row in rows if not row.is_terminal]
        if not rows or pending:
            logger.debug("Join not ready", group_id=group_id, pending=pending)
            return False

        join_step = await self._join_step(instance, group_id, group)
        if join_step is None:
            logger.error("No join step found for parallel group", group_id=group_id)
            return False

        bind_instance_context(instance.id, instance.workflow_id)
        waiting = instance.get_meta(WAITING_META_KEY) or {}
        if waiting.get("group_id") == group_id:
            instance.pop_meta(WAITING_META_KEY)

        fork_step = await self._fork_step(instance, group_id)
        ctx = await engine.context_for(instance, actor=instance.triggered_by)
        moved = ctx.moving(join_step, fork_step)
        await engine.activate_step(moved, fork_step, join_step)
        logger.info("Parallel group joining", group_id=group_id, join_step=join_step.key)

        await engine.executor.run_chain(moved, join_step)
        return True

    async def _fork_step(self, instance: Instance, group_id: str) -> Step | None:
        group = (instance.get_meta(PARALLEL_META_KEY, {}) or {}).get(group_id) or {}
        if not group.get("fork_step_id"):
            return None
        return await self.engine.step_repo.get_by_id(UUID(group["fork_step_id"]))

    async def _join_step(self, instance: Instance, group_id: str, group: dict[str, Any]) -> Step | None:
        """The group's join step: recorded by a branch, else a join step naming the group, else the only join step."""
        engine = self.engine
        if group.get("join_step_id"):
            return await engine.step_repo.get_by_id(UUID(group["join_step_id"]))

        joins = [
            step
            for step in await engine.step_repo.list_for_workflow(instance.workflow_id)
            if step.action_type == JOIN_ACTION_TYPE
        ]
        for step in joins:
            if step.config.get("group_id") == group_id:
                return step
        return joins[0] if len(joins) == 1 else None
