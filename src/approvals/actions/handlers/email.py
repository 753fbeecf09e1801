"""Send an email from a workflow step."""

import asyncio
from typing import Any

from src.approvals.actions.base import ActionHandler
from src.approvals.actions.placeholders import PlaceholderResolver
from src.approvals.actions.result import ActionResult
from src.approvals.core.logging import get_logger
from src.approvals.core.notifications import send_workflow_email
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import Step

logger = get_logger(__name__)

DEFAULT_SUBJECT = "Workflow Notification"


class EmailActionHandler(ActionHandler):
    """Config: ``to``, ``cc``, ``bcc`` (address, comma list or list), ``subject``, ``body``."""

    LABEL = "Send Email"
    DESCRIPTION = "Send an email notification with placeholders resolved from the workflow"
    CATEGORY = "notification"
    ICON = "mail"
    CONFIG_SCHEMA = {
        "type": "object",
        "required": ["to"],
        "properties": {
            "to": {"type": ["string", "array"], "title": "To", "description": "Recipients; supports placeholders"},
            "cc": {"type": ["string", "array"], "title": "CC"},
            "bcc": {"type": ["string", "array"], "title": "BCC"},
            "subject": {"type": "string", "title": "Subject", "default": DEFAULT_SUBJECT},
            "body": {"type": "string", "title": "Body", "format": "textarea"},
        },
    }
    OUTPUT_SCHEMA = {
        "type": "object",
        "properties": {
            "sent_to": {"type": "array", "items": {"type": "string"}},
            "subject": {"type": "string"},
            "cc": {"type": "array", "items": {"type": "string"}},
            "bcc": {"type": "array", "items": {"type": "string"}},
        },
    }

    def __init__(self, placeholders: PlaceholderResolver | None = None):
        self.placeholders = placeholders or PlaceholderResolver()

    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        config = step.config
        to = self.recipients(config.get("to"), ctx)
        if not to:
            return ActionResult.failed("No email recipient specified")

        subject = self.placeholders.resolve(config.get("subject") or DEFAULT_SUBJECT, ctx)
        body = self.placeholders.resolve(config.get("body") or "", ctx)
        cc = self.recipients(config.get("cc"), ctx)
        bcc = self.recipients(config.get("bcc"), ctx)

        sent = await asyncio.to_thread(send_workflow_email, to, subject, body, cc or None, bcc or None)
        if not sent:
            return ActionResult.failed("Failed to send email", {"sent_to": to, "subject": subject})

        return ActionResult.success({"sent_to": to, "subject": subject, "cc": cc, "bcc": bcc})

    def recipients(self, value: Any, ctx: WorkflowContext) -> list[str]:
        """Resolve one address, a comma-separated list, or a list of addresses."""
        if not value:
            return []
        items = value if isinstance(value, list) else [value]
        resolved: list[str] = []
        for item in items:
            for address in self.placeholders.resolve(str(item), ctx).split(","):
                if address.strip():
                    resolved.append(address.strip())
        return resolved
