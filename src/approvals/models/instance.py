"""Runtime models - instances, pending data, executions, parallel branches."""

import copy
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Index, Text
from sqlmodel import Field, SQLModel

from src.approvals.core.identity import EntityRef
from src.approvals.models.base import utc_now
from src.approvals.models.enums import InstanceStatus, ParallelStatus

# Keys of Instance.meta
WAITING_META_KEY = "waiting"
PARALLEL_META_KEY = "parallel_executions"
SUB_WORKFLOWS_META_KEY = "sub_workflows"
PARENT_META_KEY = "parent"


class Instance(SQLModel, table=True):
    """One run of a workflow against an optional target entity."""

    __tablename__ = "workflow_instances"
    __table_args__ = (
        Index("ix_workflow_instances_target", "workflow_id", "target_type", "target_id", "status"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    workflow_id: UUID = Field(foreign_key="workflows.id", index=True)

    # Target entity (nullable for entity-less actions such as "create")
    target_type: str | None = Field(default=None, max_length=100)
    target_id: str | None = Field(default=None, max_length=255)

    status: str = Field(default=InstanceStatus.PENDING.value, max_length=20, index=True)
    current_step_id: UUID | None = Field(default=None, foreign_key="workflow_steps.id")

    triggered_by_type: str | None = Field(default=None, max_length=100)
    triggered_by_id: str | None = Field(default=None, max_length=255)

    # Bookkeeping: waiting resumes, parallel groups, sub-workflows
    meta: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    step_started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    cancelled_at: datetime | None = Field(default=None)

    @property
    def is_pending(self) -> bool:
        return self.status == InstanceStatus.PENDING.value

    @property
    def target(self) -> EntityRef | None:
        if self.target_type is None or self.target_id is None:
            return None
        return EntityRef(type=self.target_type, id=self.target_id)

    @property
    def triggered_by(self) -> EntityRef | None:
        if self.triggered_by_type is None or self.triggered_by_id is None:
            return None
        return EntityRef(type=self.triggered_by_type, id=self.triggered_by_id)

    # JSON columns only persist on reassignment, so metadata edits copy first.

    def get_meta(self, key: str, default: Any = None) -> Any:
        return copy.deepcopy((self.meta or {}).get(key, default))

    def set_meta(self, key: str, value: Any) -> None:
        meta = copy.deepcopy(self.meta or {})
        meta[key] = value
        self.meta = meta
        self.updated_at = utc_now()

    def pop_meta(self, key: str) -> Any:
        meta = copy.deepcopy(self.meta or {})
        value = meta.pop(key, None)
        self.meta = meta
        self.updated_at = utc_now()
        return value


class PendingData(SQLModel, table=True):
    """Payload applied to the target entity once the instance completes."""

    __tablename__ = "workflow_pending_data"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    instance_id: UUID = Field(foreign_key="workflow_instances.id", unique=True, index=True)
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    original: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    applied: bool = Field(default=False)
    applied_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)


class StepExecution(SQLModel, table=True):
    """Immutable audit row for one decision taken on an instance."""

    __tablename__ = "workflow_step_executions"
    __table_args__ = (Index("ix_workflow_step_executions_instance", "instance_id", "executed_at"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    instance_id: UUID = Field(foreign_key="workflow_instances.id")
    step_id: UUID = Field(foreign_key="workflow_steps.id", index=True)
    position: int = Field(default=0)  # 1-based order within the instance
    actor_type: str | None = Field(default=None, max_length=100)
    actor_id: str | None = Field(default=None, max_length=255)
    decision: str = Field(max_length=30)  # StepDecision, "auto_approved" or an ActionStatus
    note: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    duration: int = Field(default=0)  # Seconds since the previous event
    bypassed: bool = Field(default=False)
    executed_at: datetime = Field(default_factory=utc_now)


class ParallelExecution(SQLModel, table=True):
    """One branch of a parallel fork."""

    __tablename__ = "workflow_parallel_executions"
    __table_args__ = (
        Index("ix_workflow_parallel_executions_group", "instance_id", "group_id"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    instance_id: UUID = Field(foreign_key="workflow_instances.id", index=True)
    group_id: str = Field(max_length=100)
    branch_key: str = Field(max_length=100)
    step_id: UUID = Field(foreign_key="workflow_steps.id")
    status: str = Field(default=ParallelStatus.PENDING.value, max_length=20)
    result: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    error: str | None = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)
    joined_at: datetime | None = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return ParallelStatus(self.status).is_terminal
