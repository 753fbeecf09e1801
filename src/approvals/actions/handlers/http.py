"""Call an external HTTP endpoint."""

from typing import Any

import httpx

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.placeholders import PlaceholderResolver
from src.approvals.actions.result import ActionResult
from src.approvals.core.config import get_settings
from src.approvals.core.logging import get_logger
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import Step

logger = get_logger(__name__)

METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpActionHandler(ActionHandler):
    """Config: ``url``, ``method``, ``headers``, ``body``, ``auth``, ``timeout``,
    ``retries``, ``on_failure`` (fail | continue | route) and ``failure_route``.

    Placeholders are resolved in the url, headers, body and auth values.
    Transport errors are retried; HTTP error statuses are not.
    """

    LABEL = "HTTP Request"
    DESCRIPTION = "Send an HTTP request to an external service"
    CATEGORY = "integration"
    ICON = "globe"
    CONFIG_SCHEMA = {
        "type": "object",
        "required": ["url"],
        "properties": {
            "url": {"type": "string", "title": "URL"},
            "method": {"type": "string", "enum": list(METHODS), "default": "GET"},
            "headers": {"type": "object", "additionalProperties": {"type": "string"}},
            "body": {"type": ["object", "string"]},
            "auth": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": ["bearer", "basic"]},
                    "token": {"type": "string"},
                    "username": {"type": "string"},
                    "password": {"type": "string"},
                },
            },
            "timeout": {"type": "number", "title": "Timeout (seconds)"},
            "retries": {"type": "integer", "minimum": 0},
            "on_failure": {"type": "string", "enum": ["fail", "continue", "route"], "default": "fail"},
            "failure_route": {"type": "string"},
        },
    }
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {
            "status": {"type": "integer"},
            "body": {},
            "headers": {"type": "object"},
        },
    }

    def __init__(
        self,
        placeholders: PlaceholderResolver | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.placeholders = placeholders or PlaceholderResolver()
        self.transport = transport

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        settings = get_settings()
        config = step.config

        url = self.placeholders.resolve(config.get("url") or "", ctx)
        if not url:
            return ActionResult.failed("No URL specified for HTTP request")

        method = str(config.get("method") or "GET").upper()
        if method not in METHODS:
            method = "GET"
        timeout = float(config.get("timeout") or settings.http_default_timeout_seconds)
        retries = int(config.get("retries", 0) or 0)
        retries = min(max(retries, 0), settings.http_max_retries)

        headers = {name: self.placeholders.resolve(str(value), ctx) for name, value in (config.get("headers") or {}).items()}
        body = self.placeholders.resolve_data(config.get("body"), ctx)
        request_args: dict[str, Any] = {"headers": headers}
        if isinstance(body, (dict, list)):
            if method == "GET":
                request_args["params"] = body
            else:
                request_args["json"] = body
        elif body:
            request_args["content"] = str(body)

        auth = self.auth(config.get("auth"), ctx, headers)

        response: httpx.Response | None = None
        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport, auth=auth) as client:
            for attempt in range(retries + 1):
                try:
                    response = await client.request(method, url, **request_args)
                    break
                except httpx.TransportError as e:
                    last_error = e
                    logger.warning("HTTP step request failed", url=url, attempt=attempt + 1, error=str(e))

        if response is None:
            return ActionResult.failed(
                f"HTTP request error: {last_error}", {"exception": type(last_error).__name__}
            )

        data = {"status": response.status_code, "body": _response_body(response)}
        if response.is_success:
            return ActionResult.success({**data, "headers": dict(response.headers)})

        on_failure = config.get("on_failure") or "fail"
        if on_failure == "continue":
            return ActionResult.success({**data, "success": False})
        if on_failure == "route" and config.get("failure_route"):
            return ActionResult.route_to(config["failure_route"], data)
        return ActionResult.failed(f"HTTP request failed with status {response.status_code}", data)

    def auth(self, config: dict[str, Any] | None, ctx: WorkflowContext, headers: dict[str, str]) -> httpx.BasicAuth | None:
        """Apply ``auth`` config: bearer tokens go into ``headers``, basic auth is returned."""
        if not config:
            return None
        kind = config.get("type") or "bearer"
        if kind == "bearer":
            headers["Authorization"] = f"Bearer {self.placeholders.resolve(config.get('token') or '', ctx)}"
            return None
        if kind == "basic":
            return httpx.BasicAuth(
                self.placeholders.resolve(config.get("username") or "", ctx),
                self.placeholders.resolve(config.get("password") or "", ctx),
            )
        return None
