"""Condition evaluation for conditional and decision steps.

A condition is a mapping::

    {"field": "data.amount", "operator": ">", "value": 10000, "route_to": "director"}

``field`` is a placeholder path (see ``placeholders``); string values may
themselves contain placeholders.
"""

import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from src.approvals.actions.placeholders import PlaceholderResolver
from src.approvals.hooks.context import WorkflowContext


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def loose_equals(actual: Any, expected: Any) -> bool:
    """Equality that treats ``"10"`` and ``10`` as equal."""
    if actual == expected:
        return True
    left, right = _as_number(actual), _as_number(expected)
    if left is not None and right is not None:
        return left == right
    if isinstance(actual, bool) or isinstance(expected, bool):
        return _truthy(actual) == _truthy(expected)
    if actual is None or expected is None:
        return not actual and not expected
    return str(actual) == str(expected)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "null", "no")
    return bool(value)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == "" or value == "0"
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return value is False


def _ordered(operator: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def compare(actual: Any, expected: Any) -> bool:
        left, right = _as_number(actual), _as_number(expected)
        if left is not None and right is not None:
            return operator(left, right)
        try:
            return operator(actual, expected)
        except TypeError:
            return False

    return compare


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    if isinstance(value, str) and "," in value:
        return [item.strip() for item in value.split(",")]
    return [value]


def _matches(actual: Any, pattern: Any) -> bool:
    if not isinstance(actual, str) or not pattern:
        return False
    expression = str(pattern)
    if len(expression) > 1 and expression.startswith("/") and expression.rfind("/") > 0:
        expression = expression[1 : expression.rfind("/")]
    return re.search(expression, actual) is not None


def _is_null(value: Any) -> bool:
    return value is None or value == "null" or value == ""


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": loose_equals,
    "===": lambda a, e: type(a) is type(e) and a == e,
    "!=": lambda a, e: not loose_equals(a, e),
    "!==": lambda a, e: not (type(a) is type(e) and a == e),
    ">": _ordered(lambda a, e: a > e),
    "<": _ordered(lambda a, e: a < e),
    ">=": _ordered(lambda a, e: a >= e),
    "<=": _ordered(lambda a, e: a <= e),
    "contains": lambda a, e: isinstance(a, str) and str(e) in a,
    "not_contains": lambda a, e: isinstance(a, str) and str(e) not in a,
    "starts_with": lambda a, e: isinstance(a, str) and a.startswith(str(e)),
    "ends_with": lambda a, e: isinstance(a, str) and a.endswith(str(e)),
    "matches": _matches,
    "in": lambda a, e: any(loose_equals(a, item) for item in _as_list(e)),
    "not_in": lambda a, e: not any(loose_equals(a, item) for item in _as_list(e)),
    "empty": lambda a, e: _is_empty(a),
    "not_empty": lambda a, e: not _is_empty(a),
    "null": lambda a, e: _is_null(a),
    "not_null": lambda a, e: not _is_null(a),
    "is_numeric": lambda a, e: _as_number(a) is not None,
    "is_string": lambda a, e: isinstance(a, str),
    "is_array": lambda a, e: isinstance(a, (list, tuple, dict)),
    "is_bool": lambda a, e: isinstance(a, bool) or str(a).lower() in ("true", "false"),
}

OPERATOR_LABELS: dict[str, str] = {
    "==": "Equals",
    "===": "Strictly equals",
    "!=": "Not equals",
    "!==": "Strictly not equals",
    ">": "Greater than",
    "<": "Less than",
    ">=": "Greater than or equal",
    "<=": "Less than or equal",
    "contains": "Contains",
    "not_contains": "Does not contain",
    "starts_with": "Starts with",
    "ends_with": "Ends with",
    "matches": "Matches pattern",
    "in": "In list",
    "not_in": "Not in list",
    "empty": "Is empty",
    "not_empty": "Is not empty",
    "null": "Is null",
    "not_null": "Is not null",
    "is_numeric": "Is numeric",
    "is_string": "Is a string",
    "is_array": "Is a list",
    "is_bool": "Is boolean",
}


class ExpressionEvaluator:
    def __init__(self, placeholders: PlaceholderResolver | None = None):
        self.placeholders = placeholders or PlaceholderResolver()

    def compare(self, actual: Any, operator: str, expected: Any) -> bool:
        """Apply ``operator``; unknown operators fall back to loose equality."""
        return OPERATORS.get(operator, loose_equals)(actual, expected)

    def evaluate(self, condition: Mapping[str, Any], ctx: WorkflowContext) -> bool:
        field = str(condition.get("field", ""))
        operator = str(condition.get("operator", "=="))
        expected = condition.get("value")

        actual = self.placeholders.value(field, ctx) if field else None
        if isinstance(expected, str) and self.placeholders.has_placeholders(expected):
            expected = self.placeholders.resolve(expected, ctx)

        return self.compare(actual, operator, expected)

    def first_route(
        self,
        conditions: Sequence[Mapping[str, Any]],
        ctx: WorkflowContext,
        default_route: str | None = None,
    ) -> str | None:
        """Route of the first matching condition, else ``default_route``."""
        for condition in conditions:
            if self.evaluate(condition, ctx):
                return condition.get("route_to") or default_route
        return default_route

    @staticmethod
    def supported_operators() -> list[dict[str, str]]:
        return [{"value": op, "label": label} for op, label in OPERATOR_LABELS.items()]
