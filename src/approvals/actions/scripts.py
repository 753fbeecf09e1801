"""Named scripts runnable from ``script`` and ``decision`` steps."""

from collections.abc import Callable
from typing import Any

from src.approvals.hooks.context import WorkflowContext
from src.approvals.hooks.invoker import CallbackInvoker


class ScriptRegistry:
    """Name → callable table. Scripts receive hook-style resolved parameters."""

    def __init__(self, invoker: CallbackInvoker | None = None):
        self.invoker = invoker or CallbackInvoker()
        self._scripts: dict[str, Callable[..., Any]] = {}
        self._descriptions: dict[str, str] = {}

    def register(self, name: str, script: Callable[..., Any], description: str = "") -> None:
        self._scripts[name] = script
        self._descriptions[name] = description

    def has(self, name: str) -> bool:
        return name in self._scripts

    def names(self) -> list[str]:
        return sorted(self._scripts)

    def describe(self) -> list[dict[str, str]]:
        return [{"name": name, "description": self._descriptions[name]} for name in self.names()]

    async def run(self, name: str, ctx: WorkflowContext, params: dict[str, Any] | None = None) -> Any:
        """Run a script with the context bag plus ``params`` (also offered as ``config``).

        Raises:
            KeyError: If no script is registered under ``name``.
        """
        if name not in self._scripts:
            raise KeyError(f"Script '{name}' is not registered")
        bag = ctx.parameters()
        bag["params"] = bag["config"] = params or {}
        return await self.invoker.invoke(self._scripts[name], bag)

    def reset(self) -> None:
        self._scripts.clear()
        self._descriptions.clear()


_scripts: ScriptRegistry | None = None


def get_script_registry() -> ScriptRegistry:
    global _scripts
    if _scripts is None:
        _scripts = ScriptRegistry()
    return _scripts


def reset_script_registry() -> None:
    global _scripts
    _scripts = None
