"""Pause the workflow for a duration or until a point in time."""

from datetime import datetime, timedelta

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.placeholders import PlaceholderResolver
from src.approvals.actions.result import ActionResult
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import Step
from src.approvals.models.base import parse_utc, utc_now

UNITS = {
    "seconds": timedelta(seconds=1),
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}


class DelayActionHandler(ActionHandler):
    """Config: ``duration`` + ``unit`` (default minutes), or ``until`` (overrides duration)."""

    LABEL = "Delay"
    DESCRIPTION = "Wait for a duration or until a specific time before continuing"
    CATEGORY = "flow"
    ICON = "clock"
    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "duration": {"type": "integer", "title": "Duration", "minimum": 0},
            "unit": {"type": "string", "title": "Unit", "enum": list(UNITS), "default": "minutes"},
            "until": {
                "type": "string",
                "title": "Until",
                "description": "Datetime to wait until (overrides duration); supports placeholders",
            },
        },
    }
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {
            "resume_at": {"type": "string", "format": "date-time"},
            "delay_seconds": {"type": "integer"},
        },
    }

    def __init__(self, placeholders: PlaceholderResolver | None = None):
        self.placeholders = placeholders or PlaceholderResolver()

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        try:
            resume_at = self.resume_at(step.config, ctx)
        except (TypeError, ValueError) as e:
            return ActionResult.failed(f"Invalid delay configuration: {e}")

        now = utc_now()
        if resume_at <= now:
            return ActionResult.success(
                {
                    "delayed": False,
                    "resume_at": resume_at.isoformat(),
                    "message": "Delay time already passed, continuing immediately",
                }
            )

        return ActionResult.waiting(
            {
                "resume_at": resume_at.isoformat(),
                "delay_seconds": int((resume_at - now).total_seconds()),
                "waiting_for": "delay",
                "message": f"Waiting until {resume_at:%Y-%m-%d %H:%M:%S}",
            }
        )

    def resume_at(self, config: dict, ctx: WorkflowContext) -> datetime:
        """Naive UTC moment the delay ends."""
        if config.get("until"):
            until = parse_utc(self.placeholders.resolve(str(config["until"]), ctx))
            if until is None:
                raise ValueError("'until' resolved to an empty value")
            return until

        duration = int(config.get("duration") or 0)
        unit = config.get("unit") or "minutes"
        if unit not in UNITS:
            raise ValueError(f"unknown unit '{unit}'")
        return utc_now() + duration * UNITS[unit]
