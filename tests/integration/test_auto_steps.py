"""Integration tests for auto-executed step chains."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.approvals.actions.registry import ActionHandlerRegistry
from src.approvals.core.config import get_settings
from src.approvals.hooks.registry import HookRegistry
from src.approvals.models import WAITING_META_KEY, InstanceStatus
from src.approvals.services import WorkflowEngine
from tests.helpers import Post, create_workflow

pytestmark = pytest.mark.integration


def stamp(key: str, **kwargs) -> dict:
    return {"key": key, "action_type": "stamp", **kwargs}


class TestChains:
    async def test_all_auto_chain_completes_on_trigger(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine, hooks: HookRegistry
    ) -> None:
        """A chain of auto steps ending on a final step should complete in the trigger."""
        await create_workflow(
            db_session,
            [stamp("a"), stamp("b"), {"key": "done", "is_final": True}],
            [("a", "b"), ("b", "done")],
        )
        applied = []
        hooks.on_complete("Post", "update", lambda data: applied.append(data))

        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        assert instance.status == InstanceStatus.COMPLETED.value
        assert applied == [{"title": "New"}]
        executions = await workflow_engine.execution_repo.list_for_instance(instance.id)
        assert [(e.decision, e.note) for e in executions] == [
            ("success", '{"stamped": "a"}'),
            ("success", '{"stamped": "b"}'),
        ]

    async def test_chain_stops_at_manual_step(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine
    ) -> None:
        """The chain should park the instance on the first manual step."""
        _, steps = await create_workflow(
            db_session,
            [stamp("a"), "review", {"key": "done", "is_final": True}],
            [("a", "review"), ("review", "done")],
        )

        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        assert instance.is_pending
        assert instance.current_step_id == steps["review"].id

    async def test_approval_into_auto_step_continues(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine
    ) -> None:
        """Approving into an auto step should run it and follow the chain."""
        await create_workflow(
            db_session,
            ["review", stamp("notify"), {"key": "done", "is_final": True}],
            [("review", "notify"), ("notify", "done")],
        )
        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        result = await workflow_engine.execute_step(instance, "notify")

        assert result.status == InstanceStatus.COMPLETED.value
        executions = await workflow_engine.execution_repo.list_for_instance(instance.id)
        assert [e.decision for e in executions] == ["approve", "success"]

    async def test_hook_veto_halts_chain(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine, hooks: HookRegistry
    ) -> None:
        """A vetoed auto step should leave the instance pending on it."""
        _, steps = await create_workflow(
            db_session,
            [stamp("a"), stamp("b"), {"key": "done", "is_final": True}],
            [("a", "b"), ("b", "done")],
        )
        hooks.before_transition_to("action:stamp", lambda step: step.key != "b")

        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        assert instance.is_pending
        assert instance.current_step_id == steps["b"].id

    async def test_chain_limit(
        self,
        db_session: AsyncSession,
        hooks: HookRegistry,
        actions: ActionHandlerRegistry,
        settings_override: pytest.MonkeyPatch,
    ) -> None:
        """A chain longer than the configured limit should stop where it is."""
        settings_override.setenv("AUTO_CHAIN_MAX_LENGTH", "2")
        get_settings.cache_clear()
        _, steps = await create_workflow(
            db_session,
            [stamp("a"), stamp("b"), stamp("c"), {"key": "done", "is_final": True}],
            [("a", "b"), ("b", "c"), ("c", "done")],
        )
        engine = WorkflowEngine(db_session, hooks=hooks, actions=actions)

        instance = await engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        assert instance.is_pending
        assert instance.current_step_id == steps["c"].id


class TestRouting:
    async def test_conditional_routes_by_payload(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine
    ) -> None:
        """A conditional step should move to the route of the matching condition."""
        config = {
            "conditions": [{"field": "data.amount", "operator": ">", "value": 1000, "route_to": "director"}],
            "default_route": "clerk",
        }
        _, steps = await create_workflow(
            db_session,
            [{"key": "route", "action_type": "conditional", "action_config": config}, "clerk", "director"],
            [("route", "clerk"), ("route", "director")],
        )

        large = await workflow_engine.trigger("Post", "update", {"amount": 5000}, target=Post(id=1))
        small = await workflow_engine.trigger("Post", "update", {"amount": 50}, target=Post(id=2))

        assert large.current_step_id == steps["director"].id
        assert small.current_step_id == steps["clerk"].id

    async def test_conditional_without_conditions_takes_first_transition(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine
    ) -> None:
        """With no conditions the first outgoing transition should be taken."""
        _, steps = await create_workflow(
            db_session,
            [{"key": "route", "action_type": "conditional"}, "clerk", "director"],
            [("route", "director"), ("route", "clerk")],
        )

        instance = await workflow_engine.trigger("Post", "update", {"amount": 5000}, target=Post(id=1))

        # Targets are ordered by step order
        assert instance.current_step_id == steps["clerk"].id

    async def test_failure_follows_error_route(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine, actions: ActionHandlerRegistry
    ) -> None:
        """A failing step with on_error_route should move to that step."""

        def call_service():
            raise ConnectionError("service down")

        actions.register("call_service", call_service)
        _, steps = await create_workflow(
            db_session,
            [
                {"key": "call", "action_type": "call_service", "action_config": {"on_error_route": "fallback"}},
                "next",
                "fallback",
            ],
            [("call", "next")],
        )

        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        assert instance.current_step_id == steps["fallback"].id
        assert instance.get_meta("last_error")["error"] == "service down"

    async def test_failure_without_route_halts(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine, actions: ActionHandlerRegistry
    ) -> None:
        """A failing step without an error route should leave the instance on it."""
        actions.register("reject_all", lambda: False)
        _, steps = await create_workflow(
            db_session,
            [{"key": "check", "action_type": "reject_all"}, {"key": "done", "is_final": True}],
            [("check", "done")],
        )

        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        assert instance.is_pending
        assert instance.current_step_id == steps["check"].id
        assert instance.get_meta("last_error")["error"] == "Handler returned false"


class TestWaiting:
    async def create_delay_workflow(self, session: AsyncSession):
        return await create_workflow(
            session,
            [
                {"key": "wait", "action_type": "delay", "action_config": {"duration": 1, "unit": "hours"}},
                "review",
            ],
            [("wait", "review")],
        )

    async def test_delay_suspends_and_resumes(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine
    ) -> None:
        """A delay should park the instance until resume moves it on."""
        _, steps = await self.create_delay_workflow(db_session)

        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        waiting = instance.get_meta(WAITING_META_KEY)
        assert instance.current_step_id == steps["wait"].id
        assert waiting["step_id"] == str(steps["wait"].id)
        assert waiting["waiting_for"] == "delay"
        assert waiting["resume_at"] is not None

        assert await workflow_engine.resume(instance.id, steps["wait"].id) is True
        assert instance.current_step_id == steps["review"].id
        assert instance.get_meta(WAITING_META_KEY) is None

    async def test_stale_resume_ignored(self, db_session: AsyncSession, workflow_engine: WorkflowEngine) -> None:
        """Resuming a step the instance no longer waits on should do nothing."""
        _, steps = await self.create_delay_workflow(db_session)
        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))
        await workflow_engine.resume(instance.id, steps["wait"].id)

        assert await workflow_engine.resume(instance.id, steps["wait"].id) is False
        assert await workflow_engine.resume(instance.id, steps["review"].id) is False

    async def test_resume_after_cancel_ignored(
        self, db_session: AsyncSession, workflow_engine: WorkflowEngine
    ) -> None:
        """A cancelled instance should not be resumed."""
        _, steps = await self.create_delay_workflow(db_session)
        instance = await workflow_engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))
        await workflow_engine.cancel_workflow(instance)

        assert await workflow_engine.resume(instance.id, steps["wait"].id) is False

    async def test_resume_handed_to_scheduler_after_commit(
        self,
        db_session: AsyncSession,
        hooks: HookRegistry,
        actions: ActionHandlerRegistry,
    ) -> None:
        """A configured scheduler should receive the resume time."""
        scheduler = AsyncMock()
        scheduler.schedule_resume.return_value = True
        engine = WorkflowEngine(db_session, hooks=hooks, actions=actions, scheduler=scheduler)
        _, steps = await self.create_delay_workflow(db_session)

        instance = await engine.trigger("Post", "update", {"title": "New"}, target=Post(id=1))

        scheduler.schedule_resume.assert_awaited_once()
        instance_id, step_id, resume_at = scheduler.schedule_resume.call_args.args
        assert (instance_id, step_id) == (instance.id, steps["wait"].id)
        assert isinstance(resume_at, datetime)
        assert resume_at.isoformat() == instance.get_meta(WAITING_META_KEY)["resume_at"]
