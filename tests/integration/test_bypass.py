"""Integration tests for the bypass modes of exempt actors."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.approvals.core.exceptions import BypassConfigurationError
from src.approvals.core.identity import EntityRef
from src.approvals.hooks.registry import HookRegistry
from src.approvals.models import AUTO_APPROVED_DECISION, BypassMode, Instance, InstanceStatus, WorkflowEvent
from src.approvals.services import AppliedResult, WorkflowEngine
from tests.helpers import Post, User, create_workflow

pytestmark = pytest.mark.integration

LINEAR_STEPS = ["draft", "legal", {"key": "published", "is_final": True}]
LINEAR_EDGES = [("draft", "legal"), ("legal", "published")]


@pytest.fixture(autouse=True)
def everyone_exempt(hooks: HookRegistry) -> None:
    hooks.exempt_with(lambda user: user is not None)


async def bypass_trigger(engine: WorkflowEngine) -> Instance | AppliedResult:
    return await engine.trigger("Post", "update", {"title": "New"}, actor=User(1), target=Post(id=1))


class TestBypassModes:
    async def test_manual_applies_without_instance(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine, hooks: HookRegistry
    ) -> None:
        """Manual bypass should apply the change with no persisted instance."""
        await create_workflow(db_session, LINEAR_STEPS, LINEAR_EDGES, bypass_mode=BypassMode.MANUAL.value)
        applied = []
        hooks.on_complete("Post", "update", lambda data: applied.append(data))

        result = await bypass_trigger(workflow_engine)

        assert isinstance(result, AppliedResult)
        assert result.bypassed is True
        assert applied == [{"title": "New"}]
        assert await workflow_engine.instance_repo.list_by_target(result.instance.target) == []

    async def test_direct_complete(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine, hooks: HookRegistry
    ) -> None:
        """direct_complete should record one bypassed execution on the final step."""
        _, steps = await create_workflow(
            db_session, LINEAR_STEPS, LINEAR_EDGES, bypass_mode=BypassMode.DIRECT_COMPLETE.value
        )
        events = []
        hooks.on_event(WorkflowEvent.AUTO_APPROVED, lambda instance: events.append(instance.id))

        instance = await bypass_trigger(workflow_engine)

        assert instance.status == InstanceStatus.AUTO_APPROVED.value
        assert instance.current_step_id == steps["published"].id
        assert events == [instance.id]
        executions = await workflow_engine.execution_repo.list_for_instance(instance.id)
        assert [(e.step_id, e.decision, e.bypassed) for e in executions] == [
            (steps["published"].id, AUTO_APPROVED_DECISION, True)
        ]
        pending = await workflow_engine.pending_repo.get_for_instance(instance.id)
        assert pending.applied is True

    async def test_auto_follow_walks_linear_chain(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine
    ) -> None:
        """auto_follow should record every step after the entry up to the final one."""
        _, steps = await create_workflow(
            db_session, LINEAR_STEPS, LINEAR_EDGES, bypass_mode=BypassMode.AUTO_FOLLOW.value
        )

        instance = await bypass_trigger(workflow_engine)

        assert instance.status == InstanceStatus.AUTO_APPROVED.value
        executions = await workflow_engine.execution_repo.list_for_instance(instance.id)
        assert [e.step_id for e in executions] == [steps["legal"].id, steps["published"].id]
        assert [e.position for e in executions] == [1, 2]
        assert all(e.bypassed for e in executions)

    async def test_custom_steps(self, db_session: AsyncSession, workflow_engine: WorkflowEngine) -> None:
        """custom_steps should record exactly the configured steps."""
        _, steps = await create_workflow(
            db_session,
            ["draft", "legal", "finance", {"key": "published", "is_final": True}],
            [("draft", "legal"), ("draft", "finance"), ("legal", "published"), ("finance", "published")],
            bypass_mode=BypassMode.CUSTOM_STEPS.value,
            bypass_steps=["finance", "published"],
        )

        instance = await bypass_trigger(workflow_engine)

        executions = await workflow_engine.execution_repo.list_for_instance(instance.id)
        assert [(e.step_id, e.decision) for e in executions] == [
            (steps["finance"].id, AUTO_APPROVED_DECISION),
            (steps["published"].id, AUTO_APPROVED_DECISION),
        ]
        assert all(e.bypassed for e in executions)
        assert instance.status == InstanceStatus.AUTO_APPROVED.value

    async def test_non_exempt_actor_not_bypassed(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine
    ) -> None:
        """Without an exempt actor the workflow should run normally."""
        await create_workflow(db_session, LINEAR_STEPS, LINEAR_EDGES, bypass_mode=BypassMode.DIRECT_COMPLETE.value)

        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        assert instance.is_pending


class TestBypassConfigurationErrors:
    @pytest.mark.parametrize(
        ("mode", "steps", "edges", "bypass_steps", "message"),
        [
            (
                BypassMode.DIRECT_COMPLETE,
                ["draft", "legal"],
                [("draft", "legal")],
                None,
                "Workflow 'Post review' has no final step",
            ),
            (
                BypassMode.DIRECT_COMPLETE,
                ["draft", {"key": "a", "is_final": True}, {"key": "b", "is_final": True}],
                [("draft", "a"), ("draft", "b")],
                None,
                "has no final step to complete directly",
            ),
            (
                BypassMode.AUTO_FOLLOW,
                ["draft", "legal", "finance", {"key": "published", "is_final": True}],
                [("draft", "legal"), ("draft", "finance"), ("legal", "published"), ("finance", "published")],
                None,
                "has branching paths at step 'Step'",
            ),
            (
                BypassMode.AUTO_FOLLOW,
                ["draft", "legal", {"key": "published", "is_final": True}],
                [("draft", "legal")],
                None,
                "has no final step reachable from 'Step'",
            ),
            (
                BypassMode.CUSTOM_STEPS,
                LINEAR_STEPS,
                LINEAR_EDGES,
                None,
                "has no steps defined for custom_steps bypass",
            ),
            (
                BypassMode.CUSTOM_STEPS,
                LINEAR_STEPS,
                LINEAR_EDGES,
                ["legal", "nope"],
                "Step 'nope' not found in workflow 'Post review'",
            ),
            (
                BypassMode.CUSTOM_STEPS,
                LINEAR_STEPS,
                LINEAR_EDGES,
                ["legal"],
                "Step 'legal' must be a final step to end a custom_steps bypass",
            ),
        ],
    )
    async def test_invalid_configuration(
        self,
        db_session: AsyncSession,
        workflow_engine: WorkflowEngine,
        mode: BypassMode,
        steps: list,
        edges: list,
        bypass_steps: list[str] | None,
        message: str,
    ) -> None:
        """Misconfigured bypasses should raise before anything is written."""
        await create_workflow(
            db_session, steps, edges, name={"en": "Post review"}, bypass_mode=mode.value, bypass_steps=bypass_steps
        )

        with pytest.raises(BypassConfigurationError, match=message):
            await bypass_trigger(workflow_engine)

        assert await workflow_engine.instance_repo.list_by_target(EntityRef("Post", "1")) == []
