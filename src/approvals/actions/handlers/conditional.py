"""Route by the first matching condition."""

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.expressions import ExpressionEvaluator
from src.approvals.actions.result import ActionResult
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import Step


class ConditionalActionHandler(ActionHandler):
    """Config: ``conditions`` (``field``/``operator``/``value``/``route_to``) and ``default_route``.

    With no conditions, or none matching and no default, the step routes to
    its first outgoing transition.
    """

    LABEL = "Conditional Branch"
    DESCRIPTION = "Route to a step based on conditions over the workflow data"
    CATEGORY = "flow"
    ICON = "git-branch"
    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "conditions": {
                "type": "array",
                "title": "Conditions",
                "items": {
                    "type": "object",
                    "properties": {
                        "field": {"type": "string", "description": "Field path, e.g. model.amount"},
                        "operator": {"type": "string", "enum": ["==", "!=", ">", "<", ">=", "<=", "contains", "in", "not_in", "empty", "not_empty"]},
                        "value": {"description": "Value to compare against"},
                        "route_to": {"type": "string", "description": "Step key to route to"},
                    },
                },
            },
            "default_route": {"type": "string", "title": "Default Route"},
        },
    }
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {
            "matched_condition": {"type": ["object", "null"]},
            "conditions_count": {"type": "integer"},
            "is_default": {"type": "boolean"},
        },
    }

    def __init__(self, evaluator: ExpressionEvaluator | None = None):
        self.evaluator = evaluator or ExpressionEvaluator()

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        config = step.config
        conditions = list(config.get("conditions") or [])
        default_route = config.get("default_route")

        if not conditions:
            first = await self.first_transition_key(step, ctx)
            if first:
                return ActionResult.route_to(
                    first, {"reason": "No conditions defined, using first available transition"}
                )
            return ActionResult.failed("No conditions defined and no default route available")

        matched = next((condition for condition in conditions if self.evaluator.evaluate(condition, ctx)), None)
        route = (matched.get("route_to") if matched else None) or default_route
        if route is None:
            route = await self.first_transition_key(step, ctx)
        if route is None:
            return ActionResult.failed("No condition matched and no default route specified")

        return ActionResult.route_to(
            route,
            {
                "matched_condition": matched,
                "conditions_count": len(conditions),
                "is_default": matched is None,
            },
        )

    async def first_transition_key(self, step: Step, ctx: WorkflowContext) -> str | None:
        if ctx.engine is None:
            return None
        targets = await ctx.engine.transition_repo.list_targets(step.id)
        return targets[0].key if targets else None
