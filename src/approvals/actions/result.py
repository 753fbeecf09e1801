"""Result of executing an auto-executable step."""

from dataclasses import dataclass, field
from typing import Any

from src.approvals.models import ActionStatus


@dataclass(frozen=True)
class ActionResult:
    status: ActionStatus
    data: dict[str, Any] = field(default_factory=dict)
    route: str | None = None  # Step key for route_to results
    error: str | None = None

    @classmethod
    def success(cls, data: dict[str, Any] | None = None) -> "ActionResult":
        return cls(ActionStatus.SUCCESS, data or {})

    @classmethod
    def failed(cls, error: str, data: dict[str, Any] | None = None) -> "ActionResult":
        return cls(ActionStatus.FAILED, data or {}, error=error)

    @classmethod
    def waiting(cls, data: dict[str, Any] | None = None) -> "ActionResult":
        """Suspend the chain; ``data["resume_at"]`` (ISO datetime) schedules a resume."""
        return cls(ActionStatus.WAITING, data or {})

    @classmethod
    def forked(cls, data: dict[str, Any] | None = None) -> "ActionResult":
        return cls(ActionStatus.FORKED, data or {})

    @classmethod
    def route_to(cls, step_key: str, data: dict[str, Any] | None = None) -> "ActionResult":
        return cls(ActionStatus.ROUTE_TO, data or {}, route=step_key)

    @property
    def should_continue(self) -> bool:
        return self.status in (ActionStatus.SUCCESS, ActionStatus.ROUTE_TO)

    @property
    def is_success(self) -> bool:
        return self.status is ActionStatus.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self.status is ActionStatus.FAILED

    @property
    def is_waiting(self) -> bool:
        return self.status is ActionStatus.WAITING
