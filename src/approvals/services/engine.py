"""Workflow engine - the approval state machine.

Public operations (``trigger``, ``execute_step``, ``cancel_workflow``,
``complete_workflow``, ``resume``, ``run_branch``, ``complete_branch``,
``join_parallel_group``) each run in one transaction: commit on success,
rollback and re-raise on failure. Background work they schedule (delayed
resumes, parallel branches) is dispatched only after the commit.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.approvals.actions.registry import ActionHandlerRegistry, get_action_registry
from src.approvals.core.exceptions import (
    HookBlockedError,
    InstanceNotPendingError,
    InvalidTransitionError,
    NotAuthorizedError,
    StepNotFoundError,
    WorkflowError,
    WorkflowNotFoundError,
)
from src.approvals.core.identity import EntityRef, actor_key, actor_ref
from src.approvals.core.locks import join_lock
from src.approvals.core.logging import bind_instance_context, clear_instance_context, get_logger
from src.approvals.hooks.context import VARIABLES_META_KEY, WorkflowContext
from src.approvals.hooks.invoker import CallbackInvoker
from src.approvals.hooks.registry import HookKind, HookRegistry, get_hook_registry
from src.approvals.models import (
    PARENT_META_KEY,
    WAITING_META_KEY,
    Instance,
    InstanceStatus,
    PendingData,
    Step,
    StepDecision,
    StepExecution,
    Workflow,
    WorkflowEvent,
)
from src.approvals.models.base import utc_now
from src.approvals.repositories import (
    InstanceRepository,
    PendingDataRepository,
    StepExecutionRepository,
    StepRepository,
    TransitionRepository,
    WorkflowRepository,
)
from src.approvals.services.auto_step_executor import AutoStepExecutor
from src.approvals.services.bypass import BypassResolver
from src.approvals.services.parallel import ParallelCoordinator
from src.approvals.services.scheduling import WorkflowScheduler
from src.approvals.services.validator import WorkflowValidator

logger = get_logger(__name__)

DeferredJob = Callable[[], Awaitable[Any]]


@dataclass
class AppliedResult:
    """Outcome of applying a change without an approval instance.

    ``instance`` is transient and never persisted.
    """

    target: Any
    applied: bool
    instance: Instance
    workflow: Workflow | None = None
    bypassed: bool = False

    @property
    def approval_required(self) -> bool:
        return False


class WorkflowEngine:
    """Drives workflow instances from trigger to completion."""

    def __init__(
        self,
        session: AsyncSession,
        hooks: HookRegistry | None = None,
        actions: ActionHandlerRegistry | None = None,
        scheduler: WorkflowScheduler | None = None,
        invoker: CallbackInvoker | None = None,
    ):
        self.session = session
        self.hooks = hooks if hooks is not None else get_hook_registry()
        self.actions = actions if actions is not None else get_action_registry()
        self.scheduler = scheduler
        self.invoker = invoker or CallbackInvoker()

        self.workflow_repo = WorkflowRepository(session)
        self.step_repo = StepRepository(session)
        self.transition_repo = TransitionRepository(session)
        self.instance_repo = InstanceRepository(session)
        self.pending_repo = PendingDataRepository(session)
        self.execution_repo = StepExecutionRepository(session)

        self.validator = WorkflowValidator(session, self.hooks, self.invoker)
        self.bypass = BypassResolver(self)
        self.executor = AutoStepExecutor(self)
        self.parallel = ParallelCoordinator(self)

        self._deferred: list[DeferredJob] = []

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def trigger(
        self,
        topic: str,
        action: str,
        payload: dict[str, Any] | None = None,
        actor: Any = None,
        target: Any = None,
        original: dict[str, Any] | None = None,
    ) -> Instance | AppliedResult:
        """Gate an operation behind the active workflow for (topic, action).

        Args:
            topic: Entity type identifier, e.g. "Post".
            action: Operation name, e.g. "update".
            payload: Data to apply once approved.
            actor: The acting user.
            target: The target entity (object with ``id`` or EntityRef), if any.
            original: Current values of the target; enables field filtering.

        Returns:
            The pending (or bypass-completed) Instance, or an AppliedResult
            when no approval was needed.
        """
        try:
            result = await self.start(topic, action, dict(payload or {}), actor, target, original)
            await self.session.commit()
        except ValueError:
            await self._rollback()
            raise
        except Exception as e:
            await self._rollback()
            logger.error("Failed to trigger workflow", topic=topic, action=action, error=str(e))
            raise
        finally:
            clear_instance_context()

        await self._run_deferred()
        return result

    async def execute_step(
        self,
        instance: Instance | UUID,
        target_step: Step | UUID | str,
        decision: StepDecision | str = StepDecision.APPROVE,
        actor: Any = None,
        note: str | None = None,
    ) -> Instance:
        """Move a pending instance to ``target_step`` with a decision.

        Raises:
            InstanceNotPendingError: The instance already concluded.
            NotAuthorizedError: ``actor`` may not act on the current step.
            InvalidTransitionError: No edge from the current step to the target.
            HookBlockedError: A before_transition_to hook vetoed the move.
        """
        decision = StepDecision(decision)
        try:
            loaded = await self._execute_step(instance, target_step, decision, actor, note)
            await self.session.commit()
        except ValueError:
            await self._rollback()
            raise
        except Exception as e:
            await self._rollback()
            logger.error("Failed to execute step", decision=decision.value, error=str(e))
            raise
        finally:
            clear_instance_context()

        await self._run_deferred()
        return loaded

    async def cancel_workflow(
        self,
        instance: Instance | UUID,
        actor: Any = None,
        decision: StepDecision | str = StepDecision.CANCEL,
        note: str | None = None,
    ) -> Instance:
        """Cancel a pending instance on its current step; pending data stays unapplied."""
        decision = StepDecision(decision)
        try:
            loaded = await self._load_for_update(instance)
            if not loaded.is_pending:
                raise InstanceNotPendingError(loaded.id, loaded.status)

            current = await self._current_step(loaded)
            ctx = await self.context_for(
                loaded,
                actor=actor,
                decision=decision.value,
                note=note,
                target_step=current,
                source_step=current,
            )
            if current is not None:
                ctx.execution = await self.record_execution(
                    loaded, current, decision.value, actor=actor, note=note
                )
            await self._conclude_cancelled(ctx)
            await self.session.commit()
        except ValueError:
            await self._rollback()
            raise
        except Exception as e:
            await self._rollback()
            logger.error("Failed to cancel workflow", error=str(e))
            raise
        finally:
            clear_instance_context()

        return loaded

    async def complete_workflow(self, instance: Instance | UUID, actor: Any = None) -> Instance:
        """Complete a pending instance; a no-op once it is no longer pending."""
        try:
            loaded = await self._load_for_update(instance)
            ctx = await self.context_for(loaded, actor=actor, target_step=await self._current_step(loaded))
            await self.complete(ctx)
            await self.session.commit()
        except ValueError:
            await self._rollback()
            raise
        except Exception as e:
            await self._rollback()
            logger.error("Failed to complete workflow", error=str(e))
            raise
        finally:
            clear_instance_context()

        await self._run_deferred()
        return loaded

    async def resume(self, instance_id: UUID, step_id: UUID) -> bool:
        """Continue an instance suspended on ``step_id``.

        Returns False (and changes nothing) for stale signals: the instance
        concluded or is no longer waiting on that step.
        """
        try:
            resumed = await self.executor.resume(instance_id, step_id)
            await self.session.commit()
        except ValueError:
            await self._rollback()
            raise
        except Exception as e:
            await self._rollback()
            logger.error("Failed to resume workflow", instance_id=str(instance_id), error=str(e))
            raise
        finally:
            clear_instance_context()

        await self._run_deferred()
        return resumed

    async def run_branch(self, instance_id: UUID, group_id: str, branch_key: str) -> bool:
        """Execute an auto-executable parallel branch, then try the join."""
        try:
            finished = await self.parallel.run_branch(instance_id, group_id, branch_key)
            await self.session.commit()
        except ValueError:
            await self._rollback()
            raise
        except Exception as e:
            await self._rollback()
            logger.error("Failed to run parallel branch", group_id=group_id, branch=branch_key, error=str(e))
            raise
        finally:
            clear_instance_context()

        if finished:
            await self.join_parallel_group(instance_id, group_id)
        await self._run_deferred()
        return finished

    async def complete_branch(
        self,
        instance: Instance | UUID,
        group_id: str,
        branch_key: str,
        actor: Any = None,
        result: dict[str, Any] | None = None,
        failed: bool = False,
        note: str | None = None,
    ) -> bool:
        """Record a manual decision on a parallel branch, then try the join.

        Returns:
            True if the join released as a consequence.
        """
        try:
            loaded = await self._load_for_update(instance)
            finished = await self.parallel.complete_branch(
                loaded, group_id, branch_key, actor=actor, result=result, failed=failed, note=note
            )
            await self.session.commit()
        except ValueError:
            await self._rollback()
            raise
        except Exception as e:
            await self._rollback()
            logger.error("Failed to complete parallel branch", group_id=group_id, branch=branch_key, error=str(e))
            raise
        finally:
            clear_instance_context()

        joined = False
        if finished:
            joined = await self.join_parallel_group(loaded.id, group_id)
        await self._run_deferred()
        return joined

    async def join_parallel_group(self, instance_id: UUID, group_id: str) -> bool:
        """Release the join for ``group_id`` if every branch is terminal.

        The check, the release and the commit all happen inside the join
        lock, so concurrent branch completions release it exactly once.
        """
        async with join_lock(instance_id, group_id):
            try:
                joined = await self.parallel.try_join(instance_id, group_id)
                await self.session.commit()
            except ValueError:
                await self._rollback()
                raise
            except Exception as e:
                await self._rollback()
                logger.error("Failed to join parallel group", group_id=group_id, error=str(e))
                raise
            finally:
                clear_instance_context()

        await self._run_deferred()
        return joined

    async def activate_workflow(self, workflow: Workflow) -> Workflow:
        """Make ``workflow`` the only active workflow for its (topic, action)."""
        try:
            for other in await self.workflow_repo.list_active(workflow.topic, workflow.action):
                if other.id != workflow.id:
                    other.active = False
                    other.updated_at = utc_now()
            workflow.active = True
            workflow.updated_at = utc_now()
            self.workflow_repo.add(workflow)
            await self.session.commit()
        except Exception as e:
            await self._rollback()
            logger.error("Failed to activate workflow", workflow_id=str(workflow.id), error=str(e))
            raise
        logger.info("Workflow activated", workflow_id=str(workflow.id), topic=workflow.topic, action=workflow.action)
        return workflow

    # ------------------------------------------------------------------
    # Building blocks (no commit)
    # ------------------------------------------------------------------

    async def start(
        self,
        topic: str,
        action: str,
        payload: dict[str, Any],
        actor: Any = None,
        target: Any = None,
        original: dict[str, Any] | None = None,
        parent: WorkflowContext | None = None,
    ) -> Instance | AppliedResult:
        """Trigger logic without transaction control (used by sub-workflow steps)."""
        workflow = await self.find_workflow(topic, action)
        if workflow is None:
            logger.debug("No active workflow, applying directly", topic=topic, action=action)
            return await self.apply_directly(topic, action, payload, actor, target)

        if await self.validator.should_bypass(workflow, actor):
            logger.info("Actor exempt from workflow", workflow_id=str(workflow.id), bypass_mode=workflow.bypass_mode)
            return await self.bypass.resolve(workflow, payload, actor, target, original)

        if original is not None and not self.validator.should_trigger_for_fields(workflow, original, payload):
            logger.info("No monitored field changed, applying directly", workflow_id=str(workflow.id))
            return await self.apply_directly(topic, action, payload, actor, target, workflow=workflow)

        preview = WorkflowContext(
            instance=self.transient_instance(workflow, actor, target),
            workflow=workflow,
            actor=actor,
            data=payload,
            target=target,
            session=self.session,
            engine=self,
        )
        for hook in self.hooks.trigger_hooks(topic, action, before=True):
            if await self.invoker.invoke(hook, preview.parameters()) is False:
                logger.info("before_trigger hook skipped the workflow", workflow_id=str(workflow.id))
                return await self.apply_directly(topic, action, payload, actor, target, workflow=workflow)

        instance, entry = await self.create_instance(workflow, payload, actor, target, original)
        if parent is not None:
            instance.set_meta(PARENT_META_KEY, {"instance_id": str(parent.instance.id)})

        ctx = await self.context_for(instance, workflow=workflow, actor=actor, target=target, target_step=entry)
        for hook in self.hooks.trigger_hooks(topic, action, before=False):
            await self.invoker.invoke(hook, ctx.parameters())
        await self.emit(WorkflowEvent.TRIGGERED, ctx)
        logger.info("Workflow triggered", topic=topic, action=action, entry_step=entry.key)

        await self.activate_step(ctx, None, entry)
        if self.actions.is_auto(entry):
            await self.executor.run_chain(ctx, entry)
        return instance

    async def apply_directly(
        self,
        topic: str,
        action: str,
        payload: dict[str, Any],
        actor: Any = None,
        target: Any = None,
        workflow: Workflow | None = None,
        bypassed: bool = False,
    ) -> AppliedResult:
        """Run the complete hooks immediately against a transient instance."""
        definition = workflow or Workflow(topic=topic, action=action, name={})
        ctx = WorkflowContext(
            instance=self.transient_instance(workflow, actor, target),
            workflow=definition,
            actor=actor,
            data=payload,
            target=target,
            bypassed=bypassed,
            decision=StepDecision.APPROVE.value,
            session=self.session,
            engine=self,
        )

        hooks = self.hooks.complete_hooks(topic, action)
        produced = None
        for hook in hooks:
            outcome = await self.invoker.invoke(hook, ctx.parameters())
            if outcome is not None:
                produced = outcome
                ctx.target = outcome

        logger.info("Change applied directly", topic=topic, action=action, hooks=len(hooks), bypassed=bypassed)
        return AppliedResult(
            target=produced if produced is not None else target,
            applied=bool(hooks),
            instance=ctx.instance,
            workflow=workflow,
            bypassed=bypassed,
        )

    async def find_workflow(self, topic: str, action: str) -> Workflow | None:
        """The active workflow for (topic, action); the oldest wins a tie."""
        workflows = await self.workflow_repo.list_active(topic, action)
        if not workflows:
            return None
        if len(workflows) > 1:
            logger.warning(
                "Multiple active workflows for topic/action, using the oldest",
                topic=topic,
                action=action,
                workflow_ids=[str(w.id) for w in workflows],
            )
        return workflows[0]

    def transient_instance(self, workflow: Workflow | None, actor: Any, target: Any) -> Instance:
        target_ref = EntityRef.of(target)
        triggered_by = actor_ref(actor)
        return Instance(
            workflow_id=workflow.id if workflow else None,  # type: ignore[arg-type]
            target_type=target_ref.type if target_ref else None,
            target_id=target_ref.id if target_ref else None,
            triggered_by_type=triggered_by.type if triggered_by else None,
            triggered_by_id=triggered_by.id if triggered_by else None,
            status=InstanceStatus.PENDING.value,
        )

    async def create_instance(
        self,
        workflow: Workflow,
        payload: dict[str, Any],
        actor: Any,
        target: Any,
        original: dict[str, Any] | None = None,
    ) -> tuple[Instance, Step]:
        """Persist a pending instance at the entry step plus its pending data.

        Any other pending instance for the same (workflow, target) is
        cancelled first.
        """
        entry = await self.step_repo.get_entry_step(workflow.id)
        if entry is None:
            raise WorkflowError(f"Workflow '{workflow.label}' has no steps defined")

        instance = self.transient_instance(workflow, actor, target)
        instance.current_step_id = entry.id
        instance.step_started_at = utc_now()

        if target is not None:
            for duplicate in await self.validator.find_pending_duplicate(workflow, target):
                duplicate.status = InstanceStatus.CANCELLED.value
                duplicate.cancelled_at = utc_now()
                duplicate.set_meta("superseded_by", str(instance.id))
                logger.info(
                    "Superseded pending instance cancelled",
                    instance_id=str(duplicate.id),
                    superseded_by=str(instance.id),
                )

        await self.instance_repo.save(instance)
        await self.pending_repo.save(PendingData(instance_id=instance.id, payload=payload, original=original))
        bind_instance_context(instance.id, workflow.id)
        return instance, entry

    async def context_for(self, instance: Instance, **fields: Any) -> WorkflowContext:
        """Build the workflow context for a persisted instance."""
        if "workflow" not in fields or fields["workflow"] is None:
            fields["workflow"] = await self.workflow_repo.get_by_id(instance.workflow_id)
        if "data" not in fields:
            pending = await self.pending_repo.get_for_instance(instance.id)
            fields["data"] = dict(pending.payload) if pending else {}
        fields.setdefault("target", instance.target)
        fields.setdefault("variables", instance.get_meta(VARIABLES_META_KEY, {}) or {})
        return WorkflowContext(instance=instance, session=self.session, engine=self, **fields)

    async def get_step(self, workflow: Workflow, ref: Step | UUID | str) -> Step:
        """Resolve a step reference (object, id or key) inside ``workflow``."""
        step: Step | None = None
        if isinstance(ref, Step):
            step = ref
        elif isinstance(ref, UUID):
            step = await self.step_repo.get_by_id(ref)
        else:
            step = await self.step_repo.get_by_key(workflow.id, ref)
            if step is None:
                try:
                    step = await self.step_repo.get_by_id(UUID(ref))
                except ValueError:
                    step = None
        if step is None or step.workflow_id != workflow.id:
            raise StepNotFoundError(f"Step '{ref}' not found in workflow '{workflow.label}'")
        return step

    async def record_execution(
        self,
        instance: Instance,
        step: Step,
        decision: str,
        actor: Any = None,
        note: str | None = None,
        bypassed: bool = False,
        duration: int | None = None,
    ) -> StepExecution:
        """Append a StepExecution for ``step``."""
        ref = actor_ref(actor)
        execution = StepExecution(
            instance_id=instance.id,
            step_id=step.id,
            actor_type=ref.type if ref else None,
            actor_id=ref.id if ref else None,
            decision=decision,
            note=note,
            duration=await self.duration_since_last_event(instance) if duration is None else duration,
            bypassed=bypassed,
        )
        return await self.execution_repo.record(execution)

    async def duration_since_last_event(self, instance: Instance) -> int:
        """Seconds since the previous execution, else since the step started or creation."""
        latest = await self.execution_repo.get_latest(instance.id)
        reference = (latest.executed_at if latest else None) or instance.step_started_at or instance.created_at
        return max(0, int((utc_now() - reference).total_seconds()))

    async def activate_step(self, ctx: WorkflowContext, source: Step | None, target: Step) -> None:
        """Point the instance at ``target`` and run its activation hooks."""
        instance = ctx.instance
        instance.current_step_id = target.id
        instance.step_started_at = utc_now()
        instance.updated_at = utc_now()
        self.instance_repo.add(instance)

        moved = ctx.moving(target, source)
        for hook in self.hooks.step_hooks(HookKind.STEP_ACTIVATED, ctx.topic or "", ctx.action or "", target):
            await self.invoker.invoke(hook, moved.parameters())

    async def run_before_transition_hooks(self, ctx: WorkflowContext, step: Step) -> None:
        """Run before_transition_to hooks for ``step``, then the (source → step) transition hooks.

        Raises:
            HookBlockedError: A hook returned False; remaining hooks are skipped.
        """
        for hook in self.hooks.step_hooks(
            HookKind.BEFORE_TRANSITION_TO, ctx.topic or "", ctx.action or "", step
        ):
            if await self.invoker.invoke(hook, ctx.parameters()) is False:
                logger.info("Transition blocked by hook", step=step.key, hook=HookKind.BEFORE_TRANSITION_TO.value)
                raise HookBlockedError(HookKind.BEFORE_TRANSITION_TO.value, step.key or step.label)

        if ctx.source_step is None:
            return
        for hook in self.hooks.transition_hooks(ctx.topic or "", ctx.action or "", ctx.source_step, step):
            if await self.invoker.invoke(hook, ctx.parameters()) is False:
                logger.info("Transition blocked by hook", step=step.key, hook=HookKind.TRANSITION.value)
                raise HookBlockedError(HookKind.TRANSITION.value, step.key or step.label)

    async def run_after_transition_hooks(self, ctx: WorkflowContext, step: Step) -> None:
        for hook in self.hooks.step_hooks(
            HookKind.AFTER_TRANSITION_TO, ctx.topic or "", ctx.action or "", step
        ):
            await self.invoker.invoke(hook, ctx.parameters())

    async def complete(self, ctx: WorkflowContext) -> bool:
        """Conclude the instance and apply its pending data via the complete hooks.

        Idempotent: returns False without side effects once the instance is
        no longer pending.
        """
        instance = ctx.instance
        if not instance.is_pending:
            logger.debug("Completion skipped, instance already concluded", status=instance.status)
            return False

        actor = ctx.actor if ctx.actor is not None else instance.triggered_by
        completion = replace(ctx, actor=actor)
        for hook in self.hooks.complete_hooks(ctx.topic or "", ctx.action or ""):
            await self.invoker.invoke(hook, completion.parameters())

        pending = await self.pending_repo.get_for_instance(instance.id)
        if pending is not None and not pending.applied:
            pending.applied = True
            pending.applied_at = utc_now()
            self.pending_repo.add(pending)

        bypassed = ctx.is_bypassed()
        instance.status = (InstanceStatus.AUTO_APPROVED if bypassed else InstanceStatus.COMPLETED).value
        instance.completed_at = utc_now()
        instance.updated_at = utc_now()
        instance.pop_meta(WAITING_META_KEY)
        self.instance_repo.add(instance)

        await self.emit(WorkflowEvent.AUTO_APPROVED if bypassed else WorkflowEvent.COMPLETED, completion)
        logger.info("Workflow completed", status=instance.status)

        await self._notify_parent(instance)
        return True

    async def emit(self, event: WorkflowEvent, ctx: WorkflowContext) -> None:
        """Dispatch a lifecycle notification to event listeners."""
        logger.info("Workflow event", event=event.value, instance_id=str(ctx.instance.id))
        listeners = self.hooks.event_hooks(event)
        if not listeners:
            return
        bag = ctx.parameters()
        bag["event"] = event
        for listener in listeners:
            await self.invoker.invoke(listener, bag)

    def defer(self, job: DeferredJob) -> None:
        """Queue ``job`` to run after the current transaction commits."""
        self._deferred.append(job)

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """Nested transaction: on error, the rows written and the jobs deferred inside are discarded."""
        queued = len(self._deferred)
        try:
            async with self.session.begin_nested():
                yield
        except Exception:
            del self._deferred[queued:]
            raise

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute_step(
        self,
        instance: Instance | UUID,
        target_ref: Step | UUID | str,
        decision: StepDecision,
        actor: Any,
        note: str | None,
    ) -> Instance:
        loaded = await self._load_for_update(instance)
        if not loaded.is_pending:
            raise InstanceNotPendingError(loaded.id, loaded.status)

        ctx = await self.context_for(loaded, actor=actor)
        workflow = ctx.workflow
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {loaded.workflow_id} not found")
        bind_instance_context(loaded.id, workflow.id, actor_key(actor))

        current = await self._current_step(loaded)
        target = await self.get_step(workflow, target_ref)
        if current is None:
            raise InvalidTransitionError(None, target.label)

        if not await self.validator.can_execute_step(workflow, loaded, current, actor):
            raise NotAuthorizedError(current.label)

        if not await self.transition_repo.exists(current.id, target.id):
            raise InvalidTransitionError(current.label, target.label)

        ctx = ctx.moving(target, current, decision=decision.value, note=note)
        await self.run_before_transition_hooks(ctx, target)

        ctx.execution = await self.record_execution(loaded, target, decision.value, actor=actor, note=note)
        logger.info("Step executed", step=target.key, decision=decision.value)

        chain_from: Step | None = None
        if decision.terminates:
            await self._conclude_cancelled(ctx)
        else:
            await self.activate_step(ctx, current, target)
            if target.is_final and decision is StepDecision.APPROVE:
                await self.complete(ctx)
            elif decision is StepDecision.APPROVE and self.actions.is_auto(target):
                chain_from = target

        await self.run_after_transition_hooks(ctx, target)
        await self.emit(WorkflowEvent.STEP_EXECUTED, ctx)

        if chain_from is not None:
            await self.executor.run_chain(ctx, chain_from, entered=True)
        return loaded

    async def _conclude_cancelled(self, ctx: WorkflowContext) -> None:
        instance = ctx.instance
        instance.status = InstanceStatus.CANCELLED.value
        instance.cancelled_at = utc_now()
        instance.updated_at = utc_now()
        instance.pop_meta(WAITING_META_KEY)
        self.instance_repo.add(instance)

        for hook in self.hooks.reject_hooks(ctx.topic or "", ctx.action or ""):
            await self.invoker.invoke(hook, ctx.parameters())
        await self.emit(WorkflowEvent.CANCELLED, ctx)
        logger.info("Workflow cancelled", decision=ctx.decision)

        if instance.get_meta(PARENT_META_KEY):
            logger.warning(
                "Sub-workflow cancelled, parent instance keeps waiting",
                parent=instance.get_meta(PARENT_META_KEY),
            )

    async def _notify_parent(self, instance: Instance) -> None:
        """Resume a parent instance waiting on this sub-workflow."""
        parent = instance.get_meta(PARENT_META_KEY)
        if not parent:
            return
        parent_instance = await self.instance_repo.get_by_id(UUID(parent["instance_id"]))
        if parent_instance is None:
            return
        waiting = parent_instance.get_meta(WAITING_META_KEY) or {}
        if waiting.get("waiting_for") != "sub_workflow" or waiting.get("sub_workflow_instance_id") != str(instance.id):
            return
        await self.executor.resume(parent_instance.id, UUID(waiting["step_id"]))

    async def _current_step(self, instance: Instance) -> Step | None:
        if instance.current_step_id is None:
            return None
        return await self.step_repo.get_by_id(instance.current_step_id)

    async def _load_for_update(self, instance: Instance | UUID) -> Instance:
        instance_id = instance if isinstance(instance, UUID) else instance.id
        loaded = await self.instance_repo.get_for_update(instance_id)
        if loaded is None:
            raise WorkflowNotFoundError(f"Workflow instance {instance_id} not found")
        return loaded

    async def _rollback(self) -> None:
        self._deferred.clear()
        await self.session.rollback()

    async def _run_deferred(self) -> None:
        while self._deferred:
            job = self._deferred.pop(0)
            try:
                await job()
            except Exception as e:
                logger.error("Deferred workflow job failed", error=str(e), exc_info=True)

