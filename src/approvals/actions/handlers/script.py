"""Run a developer-registered script."""

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.placeholders import PlaceholderResolver
from src.approvals.actions.result import ActionResult
from src.approvals.actions.scripts import ScriptRegistry, get_script_registry
from src.approvals.core.logging import get_logger
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import Step

logger = get_logger(__name__)

ROUTE_PREFIX = "route:"


class ScriptActionHandler(ActionHandler):
    """Config: ``script`` (registered name) and ``params`` (placeholders resolved).

    The script's return value decides the outcome: an ActionResult as is,
    ``"route:<key>"`` routes, False fails, anything else succeeds.
    """

    LABEL = "Execute Script"
    DESCRIPTION = "Execute a developer-registered script"
    CATEGORY = "advanced"
    ICON = "code"
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {"script": {"type": "string"}, "result": {}},
    }

    def __init__(self, scripts: ScriptRegistry | None = None, placeholders: PlaceholderResolver | None = None):
        self._scripts = scripts
        self.placeholders = placeholders or PlaceholderResolver()

    @property
    def scripts(self) -> ScriptRegistry:
        return self._scripts or get_script_registry()

    def config_schema(self) -> dict:
        return {
            "type": "object",
            "required": ["script"],
            "properties": {
                "script": {"type": "string", "title": "Script", "enum": self.scripts.names()},
                "params": {
                    "type": "object",
                    "title": "Parameters",
                    "description": "Parameters passed to the script; supports placeholders",
                    "additionalProperties": True,
                },
            },
        }

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        config = step.config
        name = config.get("script")
        if not name:
            return ActionResult.failed("No script specified")
        if not self.scripts.has(name):
            return ActionResult.failed(f"Script '{name}' not found")

        params = self.placeholders.resolve_data(config.get("params") or {}, ctx)
        try:
            outcome = await self.scripts.run(name, ctx, params)
        except Exception as e:
            logger.warning("Script raised", script=name, error=str(e))
            return ActionResult.failed(f"Script execution failed: {e}", {"script": name, "exception": type(e).__name__})

        if isinstance(outcome, ActionResult):
            return outcome
        if isinstance(outcome, str) and outcome.startswith(ROUTE_PREFIX):
            return ActionResult.route_to(outcome[len(ROUTE_PREFIX):], {"script_result": outcome})
        if outcome is False:
            return ActionResult.failed("Script returned false", {"script": name})
        return ActionResult.success({"script": name, "result": outcome})
