"""Hook registry, parameter resolution and the workflow context."""

from src.approvals.hooks.builder import HookBuilder
from src.approvals.hooks.context import WorkflowContext
from src.approvals.hooks.invoker import CallbackInvoker
from src.approvals.hooks.registry import (
    WILDCARD,
    HookKind,
    HookRegistry,
    ResolverKind,
    get_hook_registry,
    reset_hook_registry,
)

__all__ = [
    "WILDCARD",
    "CallbackInvoker",
    "HookBuilder",
    "HookKind",
    "HookRegistry",
    "ResolverKind",
    "WorkflowContext",
    "get_hook_registry",
    "reset_hook_registry",
]
