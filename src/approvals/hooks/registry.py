"""Hook registry - pattern-keyed listener table.

Every registration is stored as ``(kind, pattern, callback)`` where the
pattern is a tuple with one entry per axis. An axis matches when the
pattern value is the wildcard ``*`` or equals one of the identifiers
offered at dispatch time (a step offers its id, its key, and
``action:<type>``). Matching callbacks are returned in registration order.

Resolvers (authorization, exemption, assignee) are different: one global
resolver per kind, optionally overridden per (topic, action), and the
most specific one that answers wins.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from itertools import count
from typing import TYPE_CHECKING, Any

from src.approvals.core.logging import get_logger
from src.approvals.models import Step, WorkflowEvent

if TYPE_CHECKING:
    from src.approvals.hooks.builder import HookBuilder

logger = get_logger(__name__)

WILDCARD = "*"

Callback = Callable[..., Any]
StepRef = Step | str


class HookKind(str, Enum):
    BEFORE_TRIGGER = "before_trigger"
    AFTER_TRIGGER = "after_trigger"
    COMPLETE = "complete"
    REJECT = "reject"
    TRANSITION = "transition"
    BEFORE_TRANSITION_TO = "before_transition_to"
    AFTER_TRANSITION_TO = "after_transition_to"
    STEP_ACTIVATED = "step_activated"
    EVENT = "event"


class ResolverKind(str, Enum):
    AUTHORIZATION = "authorization"
    EXEMPTION = "exemption"
    ASSIGNEE = "assignee"


@dataclass(frozen=True)
class HookRegistration:
    kind: HookKind
    pattern: tuple[str, ...]
    callback: Callback
    sequence: int


def _step_pattern(step: StepRef) -> str:
    if isinstance(step, Step):
        return step.key or str(step.id)
    return str(step)


def _identifiers(value: Any) -> tuple[str, ...]:
    """Dispatch-time identifiers for one axis."""
    if value is None:
        return ()
    if isinstance(value, Step):
        return value.identifiers()
    if isinstance(value, Enum):
        return (str(value.value),)
    if isinstance(value, (tuple, list, set, frozenset)):
        return tuple(str(item) for item in value if item is not None)
    return (str(value),)


def _axis_matches(pattern: str, offered: tuple[str, ...]) -> bool:
    return pattern == WILDCARD or pattern in offered


class HookRegistry:
    """Process-wide table of workflow hooks and resolvers."""

    def __init__(self) -> None:
        self._hooks: dict[HookKind, list[HookRegistration]] = {}
        self._resolvers: dict[ResolverKind, dict[tuple[str, str], Callback]] = {}
        self._sequence = count()

    # Registration

    def register(self, kind: HookKind, pattern: Iterable[str], callback: Callback) -> HookRegistration:
        registration = HookRegistration(
            kind=kind,
            pattern=tuple(str(axis) for axis in pattern),
            callback=callback,
            sequence=next(self._sequence),
        )
        self._hooks.setdefault(kind, []).append(registration)
        logger.debug("Hook registered", kind=kind.value, pattern=registration.pattern)
        return registration

    def before_trigger(self, topic: str, action: str, callback: Callback) -> None:
        """Run before an instance is created; returning False applies the change directly."""
        self.register(HookKind.BEFORE_TRIGGER, (topic, action), callback)

    def after_trigger(self, topic: str, action: str, callback: Callback) -> None:
        self.register(HookKind.AFTER_TRIGGER, (topic, action), callback)

    def on_complete(self, topic: str, action: str, callback: Callback) -> None:
        """Apply the pending payload when an instance completes (or applies directly)."""
        self.register(HookKind.COMPLETE, (topic, action), callback)

    def on_reject(self, topic: str, action: str, callback: Callback) -> None:
        """Run when an instance is rejected or cancelled."""
        self.register(HookKind.REJECT, (topic, action), callback)

    on_cancel = on_reject

    def on_transition(
        self,
        from_step: StepRef,
        to_step: StepRef,
        callback: Callback,
        topic: str = WILDCARD,
        action: str = WILDCARD,
    ) -> None:
        """Run on the (from_step, to_step) edge; returning False blocks it."""
        self.register(
            HookKind.TRANSITION, (topic, action, _step_pattern(from_step), _step_pattern(to_step)), callback
        )

    def before_transition_to(
        self, step: StepRef, callback: Callback, topic: str = WILDCARD, action: str = WILDCARD
    ) -> None:
        """Run before entering ``step``; returning False blocks the transition."""
        self.register(HookKind.BEFORE_TRANSITION_TO, (topic, action, _step_pattern(step)), callback)

    def after_transition_to(
        self, step: StepRef, callback: Callback, topic: str = WILDCARD, action: str = WILDCARD
    ) -> None:
        self.register(HookKind.AFTER_TRANSITION_TO, (topic, action, _step_pattern(step)), callback)

    def on_step_activated(
        self, step: StepRef, callback: Callback, topic: str = WILDCARD, action: str = WILDCARD
    ) -> None:
        """Run whenever an instance lands on ``step``."""
        self.register(HookKind.STEP_ACTIVATED, (topic, action, _step_pattern(step)), callback)

    def on_event(self, event: WorkflowEvent | str, callback: Callback) -> None:
        name = event.value if isinstance(event, WorkflowEvent) else str(event)
        self.register(HookKind.EVENT, (name,), callback)

    def _set_resolver(
        self, kind: ResolverKind, callback: Callback, topic: str | None, action: str | None
    ) -> None:
        key = (topic or WILDCARD, action or WILDCARD)
        self._resolvers.setdefault(kind, {})[key] = callback

    def authorize_with(self, callback: Callback, topic: str | None = None, action: str | None = None) -> None:
        """Decide who may execute a step; return None to defer to assignees."""
        self._set_resolver(ResolverKind.AUTHORIZATION, callback, topic, action)

    def exempt_with(self, callback: Callback, topic: str | None = None, action: str | None = None) -> None:
        """Decide whether an actor bypasses the workflow; return None to defer to exemption rows."""
        self._set_resolver(ResolverKind.EXEMPTION, callback, topic, action)

    def assign_with(self, callback: Callback, topic: str | None = None, action: str | None = None) -> None:
        """Return the actors assigned to a step; return None to defer to assignee rows."""
        self._set_resolver(ResolverKind.ASSIGNEE, callback, topic, action)

    def workflow(self, topic: str, action: str) -> "HookBuilder":
        """Fluent registration scoped to one (topic, action)."""
        from src.approvals.hooks.builder import HookBuilder

        return HookBuilder(self, topic, action)

    # Dispatch

    def matching(self, kind: HookKind, *axes: Any) -> list[Callback]:
        """Callbacks of ``kind`` whose pattern matches every axis, in registration order."""
        offered = [_identifiers(axis) for axis in axes]
        matched: list[Callback] = []
        for registration in self._hooks.get(kind, []):
            if len(registration.pattern) != len(offered):
                continue
            if all(_axis_matches(p, o) for p, o in zip(registration.pattern, offered, strict=True)):
                matched.append(registration.callback)
        return matched

    def trigger_hooks(self, topic: str, action: str, before: bool) -> list[Callback]:
        kind = HookKind.BEFORE_TRIGGER if before else HookKind.AFTER_TRIGGER
        return self.matching(kind, topic, action)

    def complete_hooks(self, topic: str, action: str) -> list[Callback]:
        return self.matching(HookKind.COMPLETE, topic, action)

    def reject_hooks(self, topic: str, action: str) -> list[Callback]:
        return self.matching(HookKind.REJECT, topic, action)

    def transition_hooks(
        self, topic: str, action: str, from_step: Step | None, to_step: Step | None
    ) -> list[Callback]:
        return self.matching(HookKind.TRANSITION, topic, action, from_step, to_step)

    def step_hooks(self, kind: HookKind, topic: str, action: str, step: Step | None) -> list[Callback]:
        return self.matching(kind, topic, action, step)

    def event_hooks(self, event: WorkflowEvent) -> list[Callback]:
        return self.matching(HookKind.EVENT, event)

    def resolvers(self, kind: ResolverKind, topic: str, action: str) -> list[Callback]:
        """Resolvers of ``kind``, most specific first: exact, topic-wide, action-wide, global."""
        table = self._resolvers.get(kind, {})
        keys = [(topic, action), (topic, WILDCARD), (WILDCARD, action), (WILDCARD, WILDCARD)]
        found: list[Callback] = []
        for key in dict.fromkeys(keys):
            if key in table:
                found.append(table[key])
        return found

    def has_hooks(self, kind: HookKind) -> bool:
        return bool(self._hooks.get(kind))

    def reset(self) -> None:
        """Drop every hook and resolver."""
        self._hooks.clear()
        self._resolvers.clear()
        self._sequence = count()


_registry: HookRegistry | None = None


def get_hook_registry() -> HookRegistry:
    """Get or create the process-wide hook registry."""
    global _registry
    if _registry is None:
        _registry = HookRegistry()
    return _registry


def reset_hook_registry() -> None:
    """Clear the process-wide registry (test isolation)."""
    global _registry
    if _registry is not None:
        _registry.reset()
    _registry = None
