"""Wait for every branch of a parallel group, then merge their results."""

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.result import ActionResult
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import PARALLEL_META_KEY, ParallelStatus, Step
from src.approvals.models.base import utc_now
from src.approvals.repositories import ParallelExecutionRepository

DEFAULT_OUTPUT_KEY = "merged_results"


class JoinActionHandler(ActionHandler):
    """Config: ``group_id`` (defaults to the group joining here, else the first open group)
    and ``output_key`` for the merged results in the working context.

    Failed branches count as finished; their errors are reported under ``failures``.
    """

    LABEL = "Parallel Join"
    DESCRIPTION = "Wait for all parallel branches to finish and merge their results"
    CATEGORY = "flow"
    ICON = "merge"
    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "group_id": {"type": "string", "title": "Group"},
            "output_key": {"type": "string", "title": "Output Key", "default": DEFAULT_OUTPUT_KEY},
        },
    }
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {
            "group_id": {"type": "string"},
            "merged_results": {"type": "object"},
            "failures": {"type": "object"},
            "branch_count": {"type": "integer"},
        },
    }

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        if ctx.session is None:
            return ActionResult.failed("Join steps need a database session")

        instance = ctx.instance
        groups = instance.get_meta(PARALLEL_META_KEY, {}) or {}
        group_id = step.config.get("group_id") or next(
            (key for key, group in groups.items() if group.get("join_step_id") == str(step.id)),
            next(iter(groups), None),
        )
        if not group_id:
            return ActionResult.failed("No parallel execution group found")
        if group_id not in groups:
            return ActionResult.failed(f"Parallel execution group '{group_id}' not found")

        repo = ParallelExecutionRepository(ctx.session)
        rows = await repo.list_group(instance.id, group_id)
        finished = [row for row in rows if row.is_terminal]
        if len(finished) < len(rows) or not rows:
            return ActionResult.waiting(
                {
                    "group_id": group_id,
                    "completed": len(finished),
                    "total": len(rows),
                    "waiting_for": "parallel",
                }
            )

        merged = {row.branch_key: row.result or {} for row in rows}
        failures = {row.branch_key: row.error for row in rows if row.status == ParallelStatus.FAILED.value}

        joined_at = utc_now()
        for row in rows:
            row.status = ParallelStatus.JOINED.value
            row.joined_at = joined_at
            repo.add(row)

        groups.pop(group_id)
        instance.set_meta(PARALLEL_META_KEY, groups)

        output_key = step.config.get("output_key") or DEFAULT_OUTPUT_KEY
        ctx.set(output_key, merged)
        if failures:
            ctx.set(f"{output_key}_failures", failures)

        return ActionResult.success(
            {
                "group_id": group_id,
                "merged_results": merged,
                "failures": failures,
                "branch_count": len(rows),
            }
        )
