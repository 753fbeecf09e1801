"""Start another workflow from a step."""

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.placeholders import PlaceholderResolver
from src.approvals.actions.result import ActionResult
from src.approvals.core.exceptions import WorkflowError
from src.approvals.core.logging import get_logger
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import SUB_WORKFLOWS_META_KEY, Instance, Step
from src.approvals.models.base import utc_now

logger = get_logger(__name__)


class SubWorkflowActionHandler(ActionHandler):
    """Config: ``topic``, ``action``, ``data`` (placeholders resolved),
    ``model_from`` (working-context key holding the child's target) and
    ``wait_for_completion``.

    The child starts inside a savepoint, so a child that fails part-way
    leaves no instance behind and supersedes nothing. When waiting, the
    parent resumes once the child instance completes.
    """

    LABEL = "Sub-Workflow"
    DESCRIPTION = "Trigger another workflow, optionally waiting for it to complete"
    CATEGORY = "flow"
    ICON = "layers"
    CONFIG_SCHEMA = {
        "type": "object",
        "required": ["topic", "action"],
        "properties": {
            "topic": {"type": "string", "title": "Topic"},
            "action": {"type": "string", "title": "Action"},
            "data": {"type": "object", "additionalProperties": True},
            "model_from": {"type": "string", "description": "Context key holding the target entity"},
            "wait_for_completion": {"type": "boolean", "default": False},
        },
    }
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {
            "sub_workflow_instance_id": {"type": "string"},
            "topic": {"type": "string"},
            "action": {"type": "string"},
            "status": {"type": "string"},
        },
    }

    def __init__(self, placeholders: PlaceholderResolver | None = None):
        self.placeholders = placeholders or PlaceholderResolver()

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        config = step.config
        if not config.get("topic") or not config.get("action"):
            return ActionResult.failed("Sub-workflow topic and action are required")
        if ctx.engine is None:
            return ActionResult.failed("Sub-workflow steps need an engine-bound context")

        topic = self.placeholders.resolve(config["topic"], ctx)
        action = self.placeholders.resolve(config["action"], ctx)
        if await ctx.engine.find_workflow(topic, action) is None:
            return ActionResult.failed(f"Sub-workflow not found: {topic}::{action}")

        data = self.placeholders.resolve_data(config.get("data") or {}, ctx)
        target = ctx.target
        if config.get("model_from"):
            target = ctx.get(config["model_from"]) or target

        try:
            async with ctx.engine.savepoint():
                child = await ctx.engine.start(topic, action, data, actor=ctx.actor, target=target, parent=ctx)
        except WorkflowError as e:
            return ActionResult.failed(f"Failed to trigger sub-workflow: {e}", {"topic": topic, "action": action})

        if not isinstance(child, Instance):
            return ActionResult.success(
                {"topic": topic, "action": action, "status": "bypassed" if child.bypassed else "applied"}
            )

        subs = ctx.instance.get_meta(SUB_WORKFLOWS_META_KEY, {}) or {}
        subs[step.key or str(step.id)] = {
            "instance_id": str(child.id),
            "topic": topic,
            "action": action,
            "started_at": utc_now().isoformat(),
        }
        ctx.instance.set_meta(SUB_WORKFLOWS_META_KEY, subs)
        logger.info("Sub-workflow started", child_instance_id=str(child.id), topic=topic, action=action)

        result = {
            "sub_workflow_instance_id": str(child.id),
            "topic": topic,
            "action": action,
            "status": "triggered" if child.is_pending else child.status,
        }
        if config.get("wait_for_completion") and child.is_pending:
            return ActionResult.waiting({**result, "waiting_for": "sub_workflow"})
        return ActionResult.success(result)
