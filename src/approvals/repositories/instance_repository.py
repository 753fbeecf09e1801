"""Repositories for workflow runtime state."""

from uuid import UUID

from sqlalchemy import func
from sqlmodel import select

from src.approvals.core.identity import EntityRef
from src.approvals.models import (
    Instance,
    InstanceStatus,
    ParallelExecution,
    PendingData,
    StepExecution,
)
from src.approvals.repositories.base import BaseRepository


class InstanceRepository(BaseRepository[Instance]):
    """Repository for workflow instances."""

    model = Instance

    async def get_for_update(self, instance_id: UUID) -> Instance | None:
        """Load an instance with a row lock (no-op on backends without FOR UPDATE)."""
        result = await self.session.execute(
            select(Instance)
            .where(Instance.id == instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_pending_for_target(
        self,
        workflow_id: UUID,
        target: EntityRef | None,
        lock: bool = True,
    ) -> list[Instance]:
        """Pending instances of a workflow for the same target entity."""
        query = select(Instance).where(
            Instance.workflow_id == workflow_id,
            Instance.status == InstanceStatus.PENDING.value,
        )
        if target is None:
            query = query.where(Instance.target_id == None)  # noqa: E711
        else:
            query = query.where(Instance.target_type == target.type, Instance.target_id == target.id)
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query.order_by(Instance.created_at))
        return list(result.scalars().all())

    async def list_by_target(self, target: EntityRef) -> list[Instance]:
        """All instances (any status) for a target entity, newest first."""
        result = await self.session.execute(
            select(Instance)
            .where(Instance.target_type == target.type, Instance.target_id == target.id)
            .order_by(Instance.created_at.desc())
        )
        return list(result.scalars().all())


class PendingDataRepository(BaseRepository[PendingData]):
    """Repository for pending payloads."""

    model = PendingData

    async def get_for_instance(self, instance_id: UUID) -> PendingData | None:
        result = await self.session.execute(
            select(PendingData).where(PendingData.instance_id == instance_id)
        )
        return result.scalar_one_or_none()


class StepExecutionRepository(BaseRepository[StepExecution]):
    """Repository for the append-only execution audit trail."""

    model = StepExecution

    async def record(self, execution: StepExecution) -> StepExecution:
        """Append an execution, assigning its position within the instance."""
        result = await self.session.execute(
            select(func.count()).select_from(StepExecution).where(
                StepExecution.instance_id == execution.instance_id
            )
        )
        execution.position = int(result.scalar_one()) + 1
        return await self.save(execution)

    async def get_latest(self, instance_id: UUID) -> StepExecution | None:
        result = await self.session.execute(
            select(StepExecution)
            .where(StepExecution.instance_id == instance_id)
            .order_by(StepExecution.position.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_instance(self, instance_id: UUID) -> list[StepExecution]:
        result = await self.session.execute(
            select(StepExecution)
            .where(StepExecution.instance_id == instance_id)
            .order_by(StepExecution.position)
        )
        return list(result.scalars().all())


class ParallelExecutionRepository(BaseRepository[ParallelExecution]):
    """Repository for parallel branch rows."""

    model = ParallelExecution

    async def list_group(self, instance_id: UUID, group_id: str) -> list[ParallelExecution]:
        """All branch rows of one fork, re-read from the database."""
        result = await self.session.execute(
            select(ParallelExecution)
            .where(
                ParallelExecution.instance_id == instance_id,
                ParallelExecution.group_id == group_id,
            )
            .order_by(ParallelExecution.created_at, ParallelExecution.branch_key)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_branch(
        self, instance_id: UUID, group_id: str, branch_key: str
    ) -> ParallelExecution | None:
        result = await self.session.execute(
            select(ParallelExecution).where(
                ParallelExecution.instance_id == instance_id,
                ParallelExecution.group_id == group_id,
                ParallelExecution.branch_key == branch_key,
            )
        )
        return result.scalar_one_or_none()
