"""Repositories for workflow definitions."""

from uuid import UUID

from sqlalchemy import or_
from sqlmodel import select

from src.approvals.core.identity import EntityRef
from src.approvals.models import Assignee, Exemption, Step, Transition, Workflow
from src.approvals.repositories.base import BaseRepository


class WorkflowRepository(BaseRepository[Workflow]):
    """Repository for Workflow definitions."""

    model = Workflow

    async def list_active(self, topic: str, action: str) -> list[Workflow]:
        """List active, non-superseded workflows for (topic, action), oldest first."""
        result = await self.session.execute(
            select(Workflow)
            .where(
                Workflow.topic == topic,
                Workflow.action == action,
                Workflow.active == True,  # noqa: E712
                Workflow.overridden_by_id == None,  # noqa: E711
            )
            .order_by(Workflow.created_at, Workflow.id)
        )
        return list(result.scalars().all())


class StepRepository(BaseRepository[Step]):
    """Repository for workflow steps."""

    model = Step

    async def list_for_workflow(self, workflow_id: UUID) -> list[Step]:
        """List a workflow's steps in ``order``."""
        result = await self.session.execute(
            select(Step).where(Step.workflow_id == workflow_id).order_by(Step.order)
        )
        return list(result.scalars().all())

    async def get_entry_step(self, workflow_id: UUID) -> Step | None:
        """The lowest-order step, where new instances start."""
        result = await self.session.execute(
            select(Step).where(Step.workflow_id == workflow_id).order_by(Step.order).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_key(self, workflow_id: UUID, key: str) -> Step | None:
        result = await self.session.execute(
            select(Step).where(Step.workflow_id == workflow_id, Step.key == key)
        )
        return result.scalars().first()

    async def list_final(self, workflow_id: UUID) -> list[Step]:
        result = await self.session.execute(
            select(Step)
            .where(Step.workflow_id == workflow_id, Step.is_final == True)  # noqa: E712
            .order_by(Step.order)
        )
        return list(result.scalars().all())


class TransitionRepository(BaseRepository[Transition]):
    """Repository for the transition edge table."""

    model = Transition

    async def list_for_workflow(self, workflow_id: UUID) -> list[Transition]:
        result = await self.session.execute(
            select(Transition).where(Transition.workflow_id == workflow_id)
        )
        return list(result.scalars().all())

    async def list_targets(self, from_step_id: UUID) -> list[Step]:
        """Steps reachable in one hop from ``from_step_id``, by step order."""
        result = await self.session.execute(
            select(Step)
            .join(Transition, Transition.to_step_id == Step.id)  # type: ignore[arg-type]
            .where(Transition.from_step_id == from_step_id)
            .order_by(Step.order)
        )
        return list(result.scalars().all())

    async def exists(self, from_step_id: UUID, to_step_id: UUID) -> bool:
        """Check whether (from → to) is an edge of the graph."""
        result = await self.session.execute(
            select(Transition.id).where(
                Transition.from_step_id == from_step_id,
                Transition.to_step_id == to_step_id,
            )
        )
        return result.first() is not None


class AssigneeRepository(BaseRepository[Assignee]):
    """Repository for step assignees."""

    model = Assignee

    async def list_actor_ids(self, step_id: UUID) -> list[str]:
        result = await self.session.execute(
            select(Assignee.actor_id).where(Assignee.step_id == step_id)
        )
        return [str(actor_id) for actor_id in result.scalars().all()]


class ExemptionRepository(BaseRepository[Exemption]):
    """Repository for bypass exemptions."""

    model = Exemption

    async def list_for_actor(self, workflow_id: UUID, actor: EntityRef) -> list[Exemption]:
        """Exemption rows for the actor, matched by id and (when recorded) type."""
        result = await self.session.execute(
            select(Exemption).where(
                Exemption.workflow_id == workflow_id,
                Exemption.actor_id == actor.id,
                or_(Exemption.actor_type == actor.type, Exemption.actor_type == "*"),
            )
        )
        return list(result.scalars().all())
