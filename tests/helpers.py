"""Test helper functions for common data creation patterns."""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import Instance, Step, Workflow
from tests.factories import StepFactory, TransitionFactory, WorkflowFactory


@dataclass
class User:
    """Host-application actor."""

    id: int
    name: str = "user"


@dataclass
class Post:
    """Host-application target entity."""

    id: int
    title: str = "Draft"
    body: str = ""
    tags: list[str] = field(default_factory=list)


async def create_workflow(
    session: AsyncSession,
    steps: list[dict[str, Any] | str],
    edges: list[tuple[str, str]],
    **workflow_kwargs,
) -> tuple[Workflow, dict[str, Step]]:
    """Create a workflow graph and commit it.

    Args:
        session: Database session
        steps: Step keys or StepFactory kwargs (must include ``key``), in order;
            the first one is the entry step
        edges: (from key, to key) transitions
        **workflow_kwargs: Args passed to WorkflowFactory

    Returns:
        Tuple of (workflow, steps by key)
    """
    workflow = WorkflowFactory.build(**workflow_kwargs)
    session.add(workflow)
    await session.flush()

    by_key: dict[str, Step] = {}
    for order, spec in enumerate(steps):
        kwargs = {"key": spec} if isinstance(spec, str) else dict(spec)
        step = StepFactory.build(workflow_id=workflow.id, order=order, **kwargs)
        session.add(step)
        by_key[step.key] = step
    await session.flush()

    for source, target in edges:
        session.add(
            TransitionFactory.build(
                workflow_id=workflow.id,
                from_step_id=by_key[source].id,
                to_step_id=by_key[target].id,
            )
        )
    await session.commit()
    return workflow, by_key


def make_context(
    data: dict[str, Any] | None = None,
    target: Any = None,
    actor: Any = None,
    step: Step | None = None,
    variables: dict[str, Any] | None = None,
    workflow: Workflow | None = None,
) -> WorkflowContext:
    """Build a context around an unsaved instance, for handler and resolver unit tests."""
    workflow = workflow or WorkflowFactory.build()
    return WorkflowContext(
        instance=Instance(workflow_id=workflow.id),
        workflow=workflow,
        actor=actor,
        target_step=step,
        data=data or {},
        target=target,
        variables=variables or {},
    )
