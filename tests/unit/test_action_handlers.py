"""Tests for the built-in handlers that need no database."""

import json
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from src.approvals.actions.handlers import (
    ConditionalActionHandler,
    DecisionActionHandler,
    DelayActionHandler,
    EmailActionHandler,
    HttpActionHandler,
    ScriptActionHandler,
    set_decision_resolver,
)
from src.approvals.actions.result import ActionResult
from src.approvals.actions.scripts import ScriptRegistry
from src.approvals.models import ActionStatus
from src.approvals.models.base import parse_utc, utc_now
from tests.factories import StepFactory
from tests.helpers import Post, User, make_context

pytestmark = pytest.mark.unit


def step_with(action_type: str, **config):
    return StepFactory.build(action_type=action_type, action_config=config)


class TestEmailHandler:
    async def test_sends_resolved_email(self) -> None:
        """Recipients, subject and body should be resolved before sending."""
        step = step_with(
            "email",
            to="{{data.owner}}, audit@example.com",
            subject="{{model.title}} changed",
            body="By {{user.name}}",
        )
        ctx = make_context(data={"owner": "owner@example.com"}, target=Post(id=1, title="Report"), actor=User(1, "Ann"))

        with patch("src.approvals.actions.handlers.email.send_workflow_email", return_value=True) as send:
            result = await EmailActionHandler().execute(step, ctx)

        assert result.is_success
        assert result.data["sent_to"] == ["owner@example.com", "audit@example.com"]
        send.assert_called_once_with(
            ["owner@example.com", "audit@example.com"], "Report changed", "By Ann", None, None
        )

    async def test_missing_recipient_fails(self) -> None:
        """A step without recipients should fail."""
        result = await EmailActionHandler().execute(step_with("email"), make_context())
        assert result.error == "No email recipient specified"

    async def test_send_failure_fails(self) -> None:
        """A failed send should give a failed result."""
        with patch("src.approvals.actions.handlers.email.send_workflow_email", return_value=False):
            result = await EmailActionHandler().execute(step_with("email", to="a@example.com"), make_context())
        assert result.is_failed


class TestDelayHandler:
    async def test_duration_waits(self) -> None:
        """A future delay should suspend with a resume time."""
        before = utc_now()
        result = await DelayActionHandler().execute(step_with("delay", duration=2, unit="hours"), make_context())

        assert result.is_waiting
        assert result.data["waiting_for"] == "delay"
        resume_at = parse_utc(result.data["resume_at"])
        assert before + timedelta(hours=2) <= resume_at <= utc_now() + timedelta(hours=2)

    async def test_past_until_continues(self) -> None:
        """An 'until' in the past should continue immediately."""
        step = step_with("delay", until="{{data.deadline}}")
        ctx = make_context(data={"deadline": "2020-01-01T00:00:00"})

        result = await DelayActionHandler().execute(step, ctx)

        assert result.is_success
        assert result.data["delayed"] is False

    async def test_zero_duration_continues(self) -> None:
        """A zero duration should not suspend."""
        result = await DelayActionHandler().execute(step_with("delay", duration=0), make_context())
        assert result.is_success

    async def test_invalid_configuration_fails(self) -> None:
        """Unknown units and unparseable dates should fail."""
        handler = DelayActionHandler()
        bad_unit = await handler.execute(step_with("delay", duration=1, unit="fortnights"), make_context())
        bad_date = await handler.execute(step_with("delay", until="not a date"), make_context())

        assert bad_unit.error == "Invalid delay configuration: unknown unit 'fortnights'"
        assert bad_date.is_failed


class TestConditionalHandler:
    async def test_routes_on_first_match(self) -> None:
        """The first matching condition's route should be taken."""
        step = step_with(
            "conditional",
            conditions=[
                {"field": "data.amount", "operator": ">", "value": 10000, "route_to": "director"},
                {"field": "data.amount", "operator": ">", "value": 1000, "route_to": "manager"},
            ],
            default_route="clerk",
        )

        result = await ConditionalActionHandler().execute(step, make_context(data={"amount": 20000}))

        assert result.status is ActionStatus.ROUTE_TO
        assert result.route == "director"
        assert result.data["is_default"] is False

    async def test_default_route(self) -> None:
        """No match should fall back to the default route."""
        step = step_with(
            "conditional",
            conditions=[{"field": "data.amount", "operator": ">", "value": 1000, "route_to": "manager"}],
            default_route="clerk",
        )

        result = await ConditionalActionHandler().execute(step, make_context(data={"amount": 5}))

        assert result.route == "clerk"
        assert result.data["is_default"] is True

    async def test_no_route_available_fails(self) -> None:
        """Without a match, a default or an outgoing transition, the step fails."""
        step = step_with(
            "conditional",
            conditions=[{"field": "data.amount", "operator": ">", "value": 1000, "route_to": "manager"}],
        )

        result = await ConditionalActionHandler().execute(step, make_context(data={"amount": 5}))

        assert result.error == "No condition matched and no default route specified"


class TestScriptHandler:
    @pytest.fixture
    def scripts(self) -> ScriptRegistry:
        registry = ScriptRegistry()
        registry.register("double", lambda params: {"value": params["value"] * 2})
        registry.register("escalate", lambda data: "route:director" if data.get("urgent") else True)
        registry.register("reject", lambda: False)
        registry.register("explode", lambda: 1 / 0)
        return registry

    async def test_success_wraps_return_value(self, scripts: ScriptRegistry) -> None:
        """A plain return value should be wrapped as the result."""
        step = step_with("script", script="double", params={"value": 21})
        result = await ScriptActionHandler(scripts).execute(step, make_context())

        assert result.data == {"script": "double", "result": {"value": 42}}

    async def test_route_prefix(self, scripts: ScriptRegistry) -> None:
        """``route:<key>`` should route to that step."""
        result = await ScriptActionHandler(scripts).execute(
            step_with("script", script="escalate"), make_context(data={"urgent": True})
        )
        assert result.route == "director"

    async def test_params_resolve_placeholders(self, scripts: ScriptRegistry) -> None:
        """Script params should have placeholders resolved."""
        step = step_with("script", script="double", params={"value": "{{data.n}}"})
        result = await ScriptActionHandler(scripts).execute(step, make_context(data={"n": "ab"}))

        assert result.data["result"] == {"value": "abab"}

    @pytest.mark.parametrize(
        ("config", "error"),
        [
            ({}, "No script specified"),
            ({"script": "nope"}, "Script 'nope' not found"),
            ({"script": "reject"}, "Script returned false"),
            ({"script": "explode"}, "Script execution failed: division by zero"),
        ],
    )
    async def test_failures(self, scripts: ScriptRegistry, config: dict, error: str) -> None:
        """Missing, false-returning and raising scripts should fail."""
        result = await ScriptActionHandler(scripts).execute(step_with("script", **config), make_context())
        assert result.error == error


class FixedResolver:
    def __init__(self, answer: str):
        self.answer = answer
        self.prompts: list[str] = []

    async def resolve(self, prompt, allowed_routes, options) -> str:
        self.prompts.append(prompt)
        return self.answer


class TestDecisionHandler:
    async def test_expression_mode(self) -> None:
        """Expression mode should route by the first matching condition."""
        step = step_with(
            "decision",
            mode="expression",
            conditions=[{"field": "data.region", "operator": "==", "value": "eu", "route_to": "gdpr_review"}],
            default_route="standard",
        )
        result = await DecisionActionHandler().execute(step, make_context(data={"region": "eu"}))

        assert result.route == "gdpr_review"
        assert result.data == {"mode": "expression", "decision": "gdpr_review"}

    async def test_script_mode_enforces_allowed_routes(self) -> None:
        """A script route outside allowed_routes should fail."""
        scripts = ScriptRegistry()
        scripts.register("pick", lambda: "elsewhere")
        step = step_with("decision", mode="script", script="pick", allowed_routes=["a", "b"])

        result = await DecisionActionHandler(scripts=scripts).execute(step, make_context())

        assert result.error == "Script returned invalid route 'elsewhere'. Allowed: a, b"

    async def test_ai_mode_uses_resolver(self) -> None:
        """AI mode should ask the registered resolver with a resolved prompt."""
        resolver = FixedResolver("legal")
        set_decision_resolver(resolver)
        step = step_with(
            "decision", mode="ai", prompt="Classify {{data.subject}}", allowed_routes=["legal", "finance"]
        )

        result = await DecisionActionHandler().execute(step, make_context(data={"subject": "NDA"}))

        assert result.route == "legal"
        assert resolver.prompts == ["Classify NDA"]

    async def test_ai_mode_fallback_route(self) -> None:
        """An answer outside allowed_routes should use the fallback route."""
        set_decision_resolver(FixedResolver("marketing"))
        step = step_with(
            "decision", mode="ai", prompt="?", allowed_routes=["legal"], fallback_route="triage"
        )

        result = await DecisionActionHandler().execute(step, make_context())

        assert result.route == "triage"
        assert result.data["used_fallback"] is True

    async def test_ai_mode_without_resolver_fails(self) -> None:
        """AI mode with no resolver registered should fail."""
        step = step_with("decision", mode="ai", prompt="?", allowed_routes=["legal"])
        result = await DecisionActionHandler().execute(step, make_context())
        assert result.error == "Decision resolver 'default' not found"

    async def test_unknown_mode_fails(self) -> None:
        """An unknown mode should fail."""
        result = await DecisionActionHandler().execute(step_with("decision", mode="dice"), make_context())
        assert result.error == "Unknown decision mode: dice"


class TestHttpHandler:
    async def test_posts_resolved_json(self) -> None:
        """URL, headers, body and bearer auth should be resolved and sent."""
        seen: list[httpx.Request] = []

        def respond(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"ok": True})

        step = step_with(
            "http",
            url="https://hooks.example.com/posts/{{model.id}}",
            method="post",
            headers={"X-Actor": "{{user.name}}"},
            body={"title": "{{data.title}}"},
            auth={"type": "bearer", "token": "{{env:HOOK_TOKEN}}"},
        )
        ctx = make_context(data={"title": "T"}, target=Post(id=9), actor=User(1, "Ann"))
        handler = HttpActionHandler(transport=httpx.MockTransport(respond))

        with patch.dict("os.environ", {"HOOK_TOKEN": "secret"}):
            result = await handler.execute(step, ctx)

        assert result.is_success
        assert result.data["status"] == 201
        assert result.data["body"] == {"ok": True}
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.com/posts/9"
        assert request.headers["X-Actor"] == "Ann"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {"title": "T"}

    async def test_transport_errors_are_retried(self) -> None:
        """Transport errors should be retried up to the configured count."""
        attempts = {"count": 0}

        def flaky(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, text="fine")

        handler = HttpActionHandler(transport=httpx.MockTransport(flaky))
        result = await handler.execute(step_with("http", url="https://x.example.com", retries=2), make_context())

        assert result.is_success
        assert result.data["body"] == "fine"
        assert attempts["count"] == 3

    async def test_exhausted_retries_fail(self) -> None:
        """A transport error on every attempt should fail."""

        def down(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        handler = HttpActionHandler(transport=httpx.MockTransport(down))
        result = await handler.execute(step_with("http", url="https://x.example.com"), make_context())

        assert result.is_failed
        assert result.data == {"exception": "ConnectError"}

    @pytest.mark.parametrize(
        ("on_failure", "status", "route"),
        [
            ("fail", ActionStatus.FAILED, None),
            ("continue", ActionStatus.SUCCESS, None),
            ("route", ActionStatus.ROUTE_TO, "manual_check"),
        ],
    )
    async def test_error_status_policy(self, on_failure: str, status: ActionStatus, route: str | None) -> None:
        """HTTP error statuses should follow on_failure."""
        handler = HttpActionHandler(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        step = step_with(
            "http", url="https://x.example.com", on_failure=on_failure, failure_route="manual_check"
        )

        result = await handler.execute(step, make_context())

        assert result.status is status
        assert result.route == route
        assert result.data["status"] == 503

    async def test_missing_url_fails(self) -> None:
        """A step without a URL should fail."""
        result = await HttpActionHandler().execute(step_with("http"), make_context())
        assert result.error == "No URL specified for HTTP request"


def test_action_result_flags() -> None:
    """Only success and route results continue the chain."""
    assert ActionResult.success().should_continue
    assert ActionResult.route_to("x").should_continue
    assert not ActionResult.waiting().should_continue
    assert not ActionResult.failed("no").should_continue
