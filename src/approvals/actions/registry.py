"""Action handler registry - handler type string → handler capability."""

import inspect
from collections.abc import Callable
from typing import Any

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.result import ActionResult
from src.approvals.core.logging import get_logger
from src.approvals.hooks.context import WorkflowContext
from src.approvals.hooks.invoker import CallbackInvoker
from src.approvals.models import Step

logger = get_logger(__name__)

HandlerSpec = ActionHandler | type[ActionHandler] | Callable[..., Any]


class CallableActionHandler(ActionHandler):
    """Adapts a plain callable to the handler contract.

    Return values map to results: ``ActionResult`` as is, a string routes
    to that step key, a dict (or None) is a success payload, and ``False``
    is a failure.
    """

    CATEGORY = "custom"

    def __init__(self, key: str, func: Callable[..., Any], invoker: CallbackInvoker | None = None):
        self.key = key
        self.func = func
        self.invoker = invoker or CallbackInvoker()

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        bag = ctx.parameters()
        bag["config"] = step.config
        bag["step"] = step
        outcome = await self.invoker.invoke(self.func, bag)
        return to_result(outcome)

    def label(self) -> str:
        return self.key.replace("_", " ").title()


def to_result(outcome: Any) -> ActionResult:
    if isinstance(outcome, ActionResult):
        return outcome
    if outcome is False:
        return ActionResult.failed("Handler returned false")
    if isinstance(outcome, str):
        return ActionResult.route_to(outcome)
    if outcome is None or outcome is True:
        return ActionResult.success()
    if isinstance(outcome, dict):
        return ActionResult.success(outcome)
    return ActionResult.success({"result": outcome})


class ActionHandlerRegistry:
    """Maps a step's ``action_type`` to the handler that runs it."""

    def __init__(self, invoker: CallbackInvoker | None = None):
        self.invoker = invoker or CallbackInvoker()
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, key: str, handler: HandlerSpec) -> None:
        """Register a handler instance, a handler class, or a plain callable."""
        if isinstance(handler, ActionHandler):
            resolved = handler
        elif inspect.isclass(handler) and issubclass(handler, ActionHandler):
            resolved = handler()
        elif callable(handler):
            resolved = CallableActionHandler(key, handler, self.invoker)
        else:
            raise TypeError(f"Cannot register {handler!r} as action handler '{key}'")
        self._handlers[key] = resolved

    def unregister(self, key: str) -> None:
        self._handlers.pop(key, None)

    def has(self, key: str | None) -> bool:
        return key is not None and key in self._handlers

    def get(self, key: str) -> ActionHandler | None:
        return self._handlers.get(key)

    def keys(self) -> list[str]:
        return sorted(self._handlers)

    def is_auto(self, step: Step | None) -> bool:
        """True when ``step`` declares a handler type this registry can run."""
        return step is not None and self.has(step.action_type)

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        """Run the handler for ``step``; errors become failed results."""
        handler = self._handlers.get(step.action_type or "")
        if handler is None:
            logger.warning("No action handler registered", action_type=step.action_type, step=step.key)
            return ActionResult.failed(f"No handler registered for action type '{step.action_type}'")

        try:
            return await handler.execute(step, ctx)
        except Exception as e:
            logger.error(
                "Action handler raised",
                action_type=step.action_type,
                step=step.key,
                error=str(e),
                exc_info=True,
            )
            return ActionResult.failed(str(e) or type(e).__name__)

    def describe(self) -> dict[str, dict[str, Any]]:
        return {key: handler.describe() for key, handler in sorted(self._handlers.items())}

    def reset(self) -> None:
        self._handlers.clear()


def default_action_registry() -> ActionHandlerRegistry:
    """Registry pre-loaded with the built-in handlers."""
    from src.approvals.actions.handlers import BUILTIN_HANDLERS

    registry = ActionHandlerRegistry()
    for key, handler_class in BUILTIN_HANDLERS.items():
        registry.register(key, handler_class)
    return registry


_registry: ActionHandlerRegistry | None = None


def get_action_registry() -> ActionHandlerRegistry:
    """Get or create the process-wide action registry."""
    global _registry
    if _registry is None:
        _registry = default_action_registry()
    return _registry


def reset_action_registry() -> None:
    global _registry
    _registry = None
