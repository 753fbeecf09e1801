"""Auto-executable step actions: results, handlers and their registry."""

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.expressions import ExpressionEvaluator
from src.approvals.actions.placeholders import PlaceholderResolver
from src.approvals.actions.registry import (
    ActionHandlerRegistry,
    CallableActionHandler,
    default_action_registry,
    get_action_registry,
    reset_action_registry,
)
from src.approvals.actions.result import ActionResult
from src.approvals.actions.scripts import ScriptRegistry, get_script_registry, reset_script_registry

__all__ = [
    "ActionHandler",
    "ActionHandlerRegistry",
    "ActionResult",
    "CallableActionHandler",
    "ExpressionEvaluator",
    "PlaceholderResolver",
    "ScriptRegistry",
    "default_action_registry",
    "get_action_registry",
    "get_script_registry",
    "reset_action_registry",
    "reset_script_registry",
]
