"""Fork the workflow into parallel branches."""

from typing import Any
from uuid import uuid4

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.result import ActionResult
from src.approvals.core.config import get_settings
from src.approvals.core.logging import get_logger
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import PARALLEL_META_KEY, ParallelExecution, ParallelStatus, Step
from src.approvals.models.base import utc_now
from src.approvals.repositories import ParallelExecutionRepository, StepRepository, TransitionRepository

logger = get_logger(__name__)


def _branch_specs(raw: Any) -> list[tuple[str, str]]:
    """Normalise ``branches`` config into (branch key, step key) pairs."""
    specs: list[tuple[str, str]] = []
    for item in raw or []:
        if isinstance(item, dict):
            step_key = item.get("step") or item.get("key")
            if step_key:
                specs.append((str(item.get("key") or step_key), str(step_key)))
        elif item:
            specs.append((str(item), str(item)))
    return specs


class ParallelActionHandler(ActionHandler):
    """Config: ``branches`` (step keys, or ``{key, step}`` objects) and ``join_step``.

    Without ``branches`` every outgoing transition becomes a branch.
    """

    LABEL = "Parallel Split"
    DESCRIPTION = "Run several branches at the same time; pair with a Join step"
    CATEGORY = "flow"
    ICON = "split"
    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "branches": {
                "type": "array",
                "title": "Branches",
                "items": {"type": ["string", "object"]},
                "description": "Entry step keys; defaults to the outgoing transitions",
            },
            "join_step": {"type": "string", "title": "Join Step", "description": "Key of the matching join step"},
        },
    }
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {
            "group_id": {"type": "string"},
            "branches": {"type": "array", "items": {"type": "string"}},
            "branch_count": {"type": "integer"},
        },
    }

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        if ctx.session is None:
            return ActionResult.failed("Parallel steps need a database session")

        steps = StepRepository(ctx.session)
        specs = _branch_specs(step.config.get("branches"))
        if not specs:
            targets = await TransitionRepository(ctx.session).list_targets(step.id)
            specs = [(target.key or str(target.id), target.key or str(target.id)) for target in targets]
        if not specs:
            return ActionResult.failed("No parallel branches configured")

        group_id = f"{get_settings().parallel_group_prefix}{uuid4().hex[:12]}"
        repo = ParallelExecutionRepository(ctx.session)
        created: list[str] = []
        for branch_key, step_key in specs:
            branch_step = await steps.get_by_key(step.workflow_id, step_key)
            if branch_step is None:
                logger.warning("Parallel branch step not found", branch=branch_key, step_key=step_key)
                continue
            await repo.save(
                ParallelExecution(
                    instance_id=ctx.instance.id,
                    group_id=group_id,
                    branch_key=branch_key,
                    step_id=branch_step.id,
                    status=ParallelStatus.PENDING.value,
                )
            )
            created.append(branch_key)

        if not created:
            return ActionResult.failed("None of the parallel branch steps exist")

        group: dict[str, Any] = {
            "fork_step_id": str(step.id),
            "branches": created,
            "started_at": utc_now().isoformat(),
        }
        join_key = step.config.get("join_step")
        if join_key:
            join_step = await steps.get_by_key(step.workflow_id, join_key)
            if join_step is not None:
                group["join_step_id"] = str(join_step.id)

        groups = ctx.instance.get_meta(PARALLEL_META_KEY, {}) or {}
        groups[group_id] = group
        ctx.instance.set_meta(PARALLEL_META_KEY, groups)

        return ActionResult.forked({"group_id": group_id, "branches": created, "branch_count": len(created)})
