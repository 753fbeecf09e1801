"""Workflow definition models - workflows, steps, transitions, assignees, exemptions."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from src.approvals.models.base import localized, utc_now
from src.approvals.models.enums import BypassMode


class Workflow(SQLModel, table=True):
    """Approval workflow bound to a (topic, action) pair."""

    __tablename__ = "workflows"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    description: dict[str, str] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    topic: str = Field(max_length=255, index=True)  # Entity type, e.g. "Post"
    action: str = Field(max_length=100, index=True)  # Operation, e.g. "create", "update"
    active: bool = Field(default=True, index=True)

    # Field filters for update actions
    monitored_fields: list[str] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    ignored_fields: list[str] | None = Field(default=None, sa_column=Column(JSON, nullable=True))

    bypass_mode: str = Field(default=BypassMode.MANUAL.value, max_length=20)
    bypass_steps: list[str] | None = Field(default=None, sa_column=Column(JSON, nullable=True))

    overridden_by_id: UUID | None = Field(default=None, foreign_key="workflows.id")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def label(self) -> str:
        return localized(self.name, fallback=f"{self.topic}::{self.action}")


class Step(SQLModel, table=True):
    """One stage of a workflow, manual or auto-executable."""

    __tablename__ = "workflow_steps"
    __table_args__ = (UniqueConstraint("workflow_id", "order", name="uq_workflow_steps_order"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    workflow_id: UUID = Field(foreign_key="workflows.id", index=True)
    key: str | None = Field(default=None, max_length=100, index=True)
    name: dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    description: dict[str, str] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    order: int = Field(default=0)
    is_final: bool = Field(default=False)

    # Auto-executable steps carry a handler type and its configuration
    action_type: str | None = Field(default=None, max_length=50)
    action_config: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))

    # Notification template fields ({"subject": ..., "body": ...})
    notification: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_auto(self) -> bool:
        return bool(self.action_type)

    @property
    def config(self) -> dict[str, Any]:
        return dict(self.action_config or {})

    @property
    def label(self) -> str:
        return localized(self.name, fallback=self.key or str(self.id))

    def identifiers(self) -> tuple[str, ...]:
        """Values a hook pattern may use to address this step."""
        values = [str(self.id)]
        if self.key:
            values.append(self.key)
        if self.action_type:
            values.append(f"action:{self.action_type}")
        return tuple(values)


class Transition(SQLModel, table=True):
    """Directed edge between two steps of the same workflow."""

    __tablename__ = "workflow_transitions"
    __table_args__ = (UniqueConstraint("from_step_id", "to_step_id", name="uq_workflow_transitions_edge"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    workflow_id: UUID = Field(foreign_key="workflows.id", index=True)
    from_step_id: UUID = Field(foreign_key="workflow_steps.id", index=True)
    to_step_id: UUID = Field(foreign_key="workflow_steps.id", index=True)
    created_at: datetime = Field(default_factory=utc_now)


class Assignee(SQLModel, table=True):
    """Actor allowed to act on a step."""

    __tablename__ = "workflow_step_assignees"
    __table_args__ = (
        UniqueConstraint("step_id", "actor_type", "actor_id", name="uq_workflow_step_assignees"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    step_id: UUID = Field(foreign_key="workflow_steps.id", index=True)
    actor_type: str = Field(max_length=100)
    actor_id: str = Field(max_length=255, index=True)
    created_at: datetime = Field(default_factory=utc_now)


class Exemption(SQLModel, table=True):
    """Actor exempt from a workflow, optionally within a time window."""

    __tablename__ = "workflow_exemptions"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    workflow_id: UUID = Field(foreign_key="workflows.id", index=True)
    actor_type: str = Field(max_length=100)
    actor_id: str = Field(max_length=255, index=True)
    starts_at: datetime | None = Field(default=None)
    ends_at: datetime | None = Field(default=None)
    reason: str | None = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utc_now)

    def is_active(self, at: datetime | None = None) -> bool:
        moment = at or utc_now()
        if self.starts_at and moment < self.starts_at:
            return False
        if self.ends_at and moment > self.ends_at:
            return False
        return True
