"""``{{namespace.path}}`` placeholder resolution against a workflow context.

Namespaces:

- ``model`` / ``target`` - the gated target entity
- ``data`` - pending payload (also ``instance.data``)
- ``context`` / ``variables`` - the instance's working context
- ``instance``, ``workflow``, ``step``, ``user``, ``previous`` (last execution)
- ``date:<strftime format>``, ``env:<NAME>``, ``config:<setting>``

Unresolvable placeholders are left in place.
"""

import json
import os
import re
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any

from src.approvals.core.config import get_settings
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models.base import utc_now

PLACEHOLDER_PATTERN = re.compile(r"\{\{(.+?)\}\}")
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Settings never exposed through {{config:...}}
_SECRET_SETTINGS = frozenset({"resend_api_key", "database_url", "redis_url"})


def data_get(source: Any, path: str | None) -> Any:
    """Walk a dotted path through mappings, sequences and attributes."""
    if path is None or path == "":
        return source
    current = source
    for segment in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            current = getattr(current, segment, None)
    return current


def format_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.strftime(DEFAULT_DATE_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


class PlaceholderResolver:
    def has_placeholders(self, template: str) -> bool:
        return "{{" in template and "}}" in template

    def extract(self, template: str) -> list[str]:
        return [match.strip() for match in PLACEHOLDER_PATTERN.findall(template)]

    def resolve(self, template: str | None, ctx: WorkflowContext) -> str:
        """Replace every placeholder in ``template`` with its formatted value."""
        if not template:
            return ""

        def _replace(match: re.Match[str]) -> str:
            formatted = format_value(self.value(match.group(1).strip(), ctx))
            return match.group(0) if formatted is None else formatted

        return PLACEHOLDER_PATTERN.sub(_replace, template)

    def resolve_data(self, data: Any, ctx: WorkflowContext) -> Any:
        """Resolve placeholders in every string of a nested structure."""
        if isinstance(data, str):
            return self.resolve(data, ctx)
        if isinstance(data, Mapping):
            return {key: self.resolve_data(value, ctx) for key, value in data.items()}
        if isinstance(data, list):
            return [self.resolve_data(item, ctx) for item in data]
        return data

    def value(self, placeholder: str, ctx: WorkflowContext) -> Any:
        """Raw (unformatted) value of one placeholder expression."""
        if placeholder.startswith("date:"):
            return utc_now().strftime(placeholder[5:] or DEFAULT_DATE_FORMAT)
        if placeholder.startswith("env:"):
            return os.environ.get(placeholder[4:], "")
        if placeholder.startswith("config:"):
            name = placeholder[7:]
            if name in _SECRET_SETTINGS:
                return ""
            return getattr(get_settings(), name, "")

        namespace, _, path = placeholder.partition(".")
        if namespace == "instance" and (path == "data" or path.startswith("data.")):
            return data_get(ctx.data, path[5:] or None)

        sources: dict[str, Any] = {
            "model": ctx.target,
            "target": ctx.target,
            "data": ctx.data,
            "context": ctx.variables,
            "variables": ctx.variables,
            "instance": ctx.instance,
            "workflow": ctx.workflow,
            "step": ctx.target_step,
            "user": ctx.actor,
            "previous": ctx.execution,
        }
        if namespace not in sources:
            return None
        return data_get(sources[namespace], path or None)
