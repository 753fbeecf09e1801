"""Authorization, bypass, duplicate and field-filter checks."""

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.approvals.core.identity import EntityRef, actor_key
from src.approvals.core.logging import get_logger
from src.approvals.hooks.invoker import CallbackInvoker
from src.approvals.hooks.registry import HookRegistry, ResolverKind
from src.approvals.models import Instance, Step, Workflow
from src.approvals.repositories import (
    AssigneeRepository,
    ExemptionRepository,
    InstanceRepository,
)

logger = get_logger(__name__)


def flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into dotted keys: ``{"a": {"b": 1}}`` → ``{"a.b": 1}``.

    Empty lists and mappings flatten to None, so clearing an already empty
    field is not a change.
    """
    flat: dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, Mapping) and value:
            flat.update(flatten(value, f"{dotted}."))
        elif isinstance(value, (list, tuple, Mapping)) and not value:
            flat[dotted] = None
        else:
            flat[dotted] = value
    return flat


def changed_fields(original: Mapping[str, Any], changes: Mapping[str, Any]) -> set[str]:
    """Dotted keys whose value in ``changes`` differs from ``original``.

    A key missing from ``original`` reads as None.
    """
    before = flatten(original)
    after = flatten(changes)
    return {key for key, value in after.items() if before.get(key) != value}


def _field_matches(field: str, patterns: Iterable[str]) -> bool:
    # "address" also covers "address.city"
    return any(field == pattern or field.startswith(f"{pattern}.") for pattern in patterns)


class WorkflowValidator:
    def __init__(
        self,
        session: AsyncSession,
        hooks: HookRegistry,
        invoker: CallbackInvoker | None = None,
    ):
        self.session = session
        self.hooks = hooks
        self.invoker = invoker or CallbackInvoker()
        self.assignee_repo = AssigneeRepository(session)
        self.exemption_repo = ExemptionRepository(session)
        self.instance_repo = InstanceRepository(session)

    async def _first_answer(
        self, kind: ResolverKind, workflow: Workflow, bag: dict[str, Any]
    ) -> Any:
        """First non-None answer among resolvers for the workflow, most specific first."""
        for resolver in self.hooks.resolvers(kind, workflow.topic, workflow.action):
            answer = await self.invoker.invoke(resolver, bag)
            if answer is not None:
                return answer
        return None

    async def should_bypass(self, workflow: Workflow, actor: Any) -> bool:
        """Whether ``actor`` is exempt from ``workflow``.

        An exemption resolver's answer wins; otherwise an exemption row whose
        time window covers now.
        """
        if actor is None:
            return False

        bag = {"workflow": workflow, "user": actor, "actor": actor}
        answer = await self._first_answer(ResolverKind.EXEMPTION, workflow, bag)
        if answer is not None:
            return bool(answer)

        ref = EntityRef.of(actor)
        if ref is None:
            return False
        exemptions = await self.exemption_repo.list_for_actor(workflow.id, ref)
        return any(exemption.is_active() for exemption in exemptions)

    async def assignees(self, workflow: Workflow, instance: Instance | None, step: Step) -> list[str]:
        """Actor ids allowed to act on ``step``."""
        bag = {"workflow": workflow, "instance": instance, "step": step}
        answer = await self._first_answer(ResolverKind.ASSIGNEE, workflow, bag)
        if answer is not None:
            return [key for key in (actor_key(item) for item in answer) if key is not None]
        return await self.assignee_repo.list_actor_ids(step.id)

    async def can_execute_step(
        self, workflow: Workflow, instance: Instance, step: Step, actor: Any
    ) -> bool:
        """Whether ``actor`` may act on ``step`` of ``instance``.

        An authorization resolver's answer wins. Otherwise the step's
        assignees decide; a step without assignees is open to anyone.
        """
        bag = {"workflow": workflow, "instance": instance, "step": step, "user": actor, "actor": actor}
        answer = await self._first_answer(ResolverKind.AUTHORIZATION, workflow, bag)
        if answer is not None:
            return bool(answer)

        allowed = await self.assignees(workflow, instance, step)
        if not allowed:
            return True
        return actor_key(actor) in allowed

    async def find_pending_duplicate(self, workflow: Workflow, target: Any) -> list[Instance]:
        """Pending instances of ``workflow`` for the same target, row-locked."""
        return await self.instance_repo.find_pending_for_target(workflow.id, EntityRef.of(target))

    def should_trigger_for_fields(
        self,
        workflow: Workflow,
        original: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> bool:
        """Whether an update touching ``changes`` needs approval under the field filters."""
        changed = changed_fields(original, changes)
        if not changed:
            return False

        if workflow.monitored_fields:
            return any(_field_matches(field, workflow.monitored_fields) for field in changed)

        if workflow.ignored_fields:
            return any(not _field_matches(field, workflow.ignored_fields) for field in changed)

        return True
