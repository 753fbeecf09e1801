"""Action handler capability contract.

``execute`` is the only thing the engine calls. The describe methods feed
an external workflow designer and have no runtime effect.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from src.approvals.actions.result import ActionResult
from src.approvals.hooks.context import WorkflowContext
from src.approvals.models import Step


class ActionHandler(ABC):
    LABEL: ClassVar[str] = ""
    DESCRIPTION: ClassVar[str] = ""
    CATEGORY: ClassVar[str] = "general"
    ICON: ClassVar[str] = "cog"
    CONFIG_SCHEMA: ClassVar[dict[str, Any]] = {}
    OUTPUT_SCHEMA: ClassVar[dict[str, Any]] = {}

    @abstractmethod
    async def execute(self, step: Step, ctx: WorkflowContext) -> ActionResult:
        """Run the step and report how the chain should proceed."""

    def config_schema(self) -> dict[str, Any]:
        return dict(self.CONFIG_SCHEMA)

    def output_schema(self) -> dict[str, Any]:
        return dict(self.OUTPUT_SCHEMA)

    def label(self) -> str:
        return self.LABEL or type(self).__name__

    def description(self) -> str:
        return self.DESCRIPTION

    def category(self) -> str:
        return self.CATEGORY

    def icon(self) -> str:
        return self.ICON

    def describe(self) -> dict[str, Any]:
        return {
            "label": self.label(),
            "description": self.description(),
            "category": self.category(),
            "icon": self.icon(),
            "config_schema": self.config_schema(),
            "output_schema": self.output_schema(),
        }
