"""Route by expression, script, or an external decision resolver."""

from typing import Any, Protocol

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.expressions import ExpressionEvaluator
from src.approvals.actions.placeholders import PlaceholderResolver
from src.approvals.actions.result import ActionResult
from src.approvals.actions.scripts import ScriptRegistry, get_script_registry
from src.approvals.core.logging import get_logger
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import Step

logger = get_logger(__name__)

MODES = ("expression", "script", "ai")


class DecisionResolver(Protocol):
    """Picks one of ``allowed_routes`` for a prompt (e.g. backed by an LLM)."""

    async def resolve(self, prompt: str, allowed_routes: list[str], options: dict[str, Any]) -> str: ...


_resolvers: dict[str, DecisionResolver] = {}


def set_decision_resolver(resolver: DecisionResolver, provider: str = "default") -> None:
    _resolvers[provider] = resolver


def get_decision_resolver(provider: str = "default") -> DecisionResolver | None:
    return _resolvers.get(provider)


def reset_decision_resolvers() -> None:
    _resolvers.clear()


class DecisionActionHandler(ActionHandler):
    """Config: ``mode`` plus per-mode settings.

    - expression: ``conditions``, ``default_route``
    - script: ``script``, ``params``, ``allowed_routes``
    - ai: ``provider``, ``prompt``, ``allowed_routes``, ``fallback_route``,
      ``model``, ``temperature``, ``max_tokens``
    """

    LABEL = "Decision"
    DESCRIPTION = "Route the workflow by expression, script or AI decision"
    CATEGORY = "flow"
    ICON = "signpost"
    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "mode": {"type": "string", "enum": list(MODES), "default": "expression"},
            "conditions": {"type": "array", "items": {"type": "object"}},
            "default_route": {"type": "string"},
            "script": {"type": "string"},
            "params": {"type": "object", "additionalProperties": True},
            "provider": {"type": "string", "default": "default"},
            "prompt": {"type": "string", "format": "textarea"},
            "allowed_routes": {"type": "array", "items": {"type": "string"}},
            "fallback_route": {"type": "string"},
        },
    }
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {"mode": {"type": "string"}, "decision": {"type": "string"}},
    }

    def __init__(
        self,
        evaluator: ExpressionEvaluator | None = None,
        placeholders: PlaceholderResolver | None = None,
        scripts: ScriptRegistry | None = None,
    ):
        self.placeholders = placeholders or PlaceholderResolver()
        self.evaluator = evaluator or ExpressionEvaluator(self.placeholders)
        self._scripts = scripts

    @property
    def scripts(self) -> ScriptRegistry:
        return self._scripts or get_script_registry()

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        config = step.config
        mode = config.get("mode") or "expression"
        if mode == "expression":
            return self.by_expression(config, ctx)
        if mode == "script":
            return await self.by_script(config, ctx)
        if mode == "ai":
            return await self.by_resolver(config, ctx)
        return ActionResult.failed(f"Unknown decision mode: {mode}")

    def by_expression(self, config: dict[str, Any], ctx: WorkflowContext) -> ActionResult:
        conditions = list(config.get("conditions") or [])
        default_route = config.get("default_route")
        if not conditions and not default_route:
            return ActionResult.failed("No conditions or default route configured")

        route = self.evaluator.first_route(conditions, ctx, default_route)
        if not route:
            return ActionResult.failed("No condition matched and no default route configured")
        return ActionResult.route_to(route, {"mode": "expression", "decision": route})

    async def by_script(self, config: dict[str, Any], ctx: WorkflowContext) -> ActionResult:
        name = config.get("script")
        if not name:
            return ActionResult.failed("No script specified for decision")
        if not self.scripts.has(name):
            return ActionResult.failed(f"Decision script '{name}' not found")

        params = self.placeholders.resolve_data(config.get("params") or {}, ctx)
        try:
            route = await self.scripts.run(name, ctx, params)
        except Exception as e:
            logger.warning("Decision script raised", script=name, error=str(e))
            return ActionResult.failed(f"Decision script failed: {e}", {"script": name})

        if not isinstance(route, str):
            return ActionResult.failed("Decision script must return a step key")

        allowed = list(config.get("allowed_routes") or [])
        if allowed and route not in allowed:
            return ActionResult.failed(f"Script returned invalid route '{route}'. Allowed: {', '.join(allowed)}")
        return ActionResult.route_to(route, {"mode": "script", "script": name, "decision": route})

    async def by_resolver(self, config: dict[str, Any], ctx: WorkflowContext) -> ActionResult:
        provider = config.get("provider") or "default"
        prompt = config.get("prompt")
        allowed = list(config.get("allowed_routes") or [])
        if not prompt:
            return ActionResult.failed("No prompt specified for AI decision")
        if not allowed:
            return ActionResult.failed("AI decision requires allowed_routes to constrain the response")

        resolver = get_decision_resolver(provider)
        if resolver is None:
            return ActionResult.failed(f"Decision resolver '{provider}' not found")

        options = {
            "model": config.get("model"),
            "temperature": config.get("temperature", 0.1),
            "max_tokens": config.get("max_tokens", 100),
            "context": {
                "topic": ctx.topic,
                "action": ctx.action,
                "data": ctx.data,
                "variables": ctx.variables,
            },
        }
        try:
            decision = await resolver.resolve(self.placeholders.resolve(prompt, ctx), allowed, options)
        except Exception as e:
            logger.warning("Decision resolver raised", provider=provider, error=str(e))
            return ActionResult.failed(f"AI decision failed: {e}", {"provider": provider})

        if decision not in allowed:
            fallback = config.get("fallback_route")
            if fallback:
                return ActionResult.route_to(
                    fallback,
                    {"mode": "ai", "provider": provider, "ai_decision": decision, "used_fallback": True},
                )
            return ActionResult.failed(f"AI returned invalid route '{decision}'. Allowed: {', '.join(allowed)}")

        return ActionResult.route_to(decision, {"mode": "ai", "provider": provider, "decision": decision})
