"""Parameter resolution for hook callbacks.

Hook callbacks declare whatever parameters they need; the invoker fills
them from a bag of named values. Each parameter is resolved in order:

1. by type - the first bag value that is an instance of the annotation;
   when several match, a same-named one wins over the first;
2. by name - the bag value whose key equals the parameter name;
3. by position - the value at the parameter's index in a positional list;
4. the parameter's default;
5. None, when the annotation admits None.

Builtin scalars and containers never resolve by type, so ``(name: str,
age: int)`` is filled by name rather than by whichever string comes first.

The same-name tie-break among type matches is deliberate. Context bags hold
several values of one class (``step``, ``target_step`` and ``source_step``
are all Steps; ``user`` and ``actor`` are the same actor), and a callback
typed ``source_step: Step`` must get the source step rather than whichever
Step the bag lists first. Without a same-named match, the first type match
wins regardless of its key.
"""

import inspect
import types
import typing
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from src.approvals.core.exceptions import UnresolvableParameterError
from src.approvals.core.logging import get_logger

logger = get_logger(__name__)

_UNTYPED = (
    str, int, float, bool, complex, bytes, bytearray,
    dict, list, tuple, set, frozenset, object,
)  # fmt: skip

_MISSING = object()


def _callback_name(callback: Callable[..., Any]) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)


def _type_hints(callback: Callable[..., Any]) -> dict[str, Any]:
    target = callback
    if not (inspect.isfunction(target) or inspect.ismethod(target)):
        target = getattr(callback, "__call__", callback)
    try:
        return typing.get_type_hints(target)
    except (NameError, TypeError):
        # Unresolvable forward references: fall back to raw annotations
        return {}


def _split_union(annotation: Any) -> tuple[Any, ...]:
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        return typing.get_args(annotation)
    return (annotation,)


def matchable_types(annotation: Any) -> tuple[type, ...]:
    """Classes a bag value may be an instance of to satisfy ``annotation``."""
    if annotation is inspect.Parameter.empty or annotation is Any:
        return ()
    matched: list[type] = []
    for member in _split_union(annotation):
        if member is type(None):
            continue
        origin = typing.get_origin(member)
        candidate = origin if origin is not None else member
        if isinstance(candidate, type) and candidate not in _UNTYPED:
            matched.append(candidate)
    return tuple(matched)


def allows_none(annotation: Any) -> bool:
    if annotation is inspect.Parameter.empty or annotation is Any or annotation is None:
        return True
    return any(member is type(None) for member in _split_union(annotation))


class CallbackInvoker:
    """Invoke callbacks with parameters resolved from a named bag."""

    def resolve(
        self,
        callback: Callable[..., Any],
        named: Mapping[str, Any] | None = None,
        positional: Sequence[Any] | None = None,
    ) -> dict[str, Any]:
        """Resolve keyword arguments for ``callback``.

        Raises:
            UnresolvableParameterError: If a parameter cannot be filled.
        """
        named = named or {}
        positional = positional or ()
        hints = _type_hints(callback)
        signature = inspect.signature(callback)

        arguments: dict[str, Any] = {}
        index = 0
        for name, parameter in signature.parameters.items():
            if parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            annotation = hints.get(name, parameter.annotation)
            value = self._resolve_one(name, parameter, annotation, named, positional, index)
            if value is _MISSING:
                raise UnresolvableParameterError(name, _callback_name(callback), named.keys())
            arguments[name] = value
            index += 1
        return arguments

    def _resolve_one(
        self,
        name: str,
        parameter: inspect.Parameter,
        annotation: Any,
        named: Mapping[str, Any],
        positional: Sequence[Any],
        index: int,
    ) -> Any:
        classes = matchable_types(annotation)
        if classes:
            if isinstance(named.get(name), classes):
                return named[name]
            for value in named.values():
                if value is not None and isinstance(value, classes):
                    return value

        if name in named:
            return named[name]

        if index < len(positional):
            return positional[index]

        if parameter.default is not inspect.Parameter.empty:
            return parameter.default

        if parameter.annotation is not inspect.Parameter.empty and allows_none(annotation):
            return None

        return _MISSING

    async def invoke(
        self,
        callback: Callable[..., Any],
        named: Mapping[str, Any] | None = None,
        positional: Sequence[Any] | None = None,
    ) -> Any:
        """Call ``callback`` with resolved parameters, awaiting async results."""
        arguments = self.resolve(callback, named, positional)
        positional_only = [
            arguments.pop(name)
            for name, parameter in inspect.signature(callback).parameters.items()
            if parameter.kind is inspect.Parameter.POSITIONAL_ONLY and name in arguments
        ]
        result = callback(*positional_only, **arguments)
        if inspect.isawaitable(result):
            result = await result
        return result
