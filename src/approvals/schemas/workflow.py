"""Response contract for callers that expose workflow operations over HTTP."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import status
from pydantic import BaseModel, ConfigDict, Field

from src.approvals.models import Instance, InstanceStatus, Step


class InstanceSummary(BaseModel):
    """Schema for reading a workflow instance."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workflow_id: UUID
    status: InstanceStatus
    current_step_id: UUID | None = None
    current_step_name: str | None = None
    target_type: str | None = None
    target_id: str | None = None
    triggered_by_type: str | None = None
    triggered_by_id: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class TriggerResponse(BaseModel):
    """Outcome of ``WorkflowEngine.trigger``.

    ``status_code`` is 202 while the change awaits approval and 200 once it
    has been applied (directly, by bypass, or by an all-auto chain).
    """

    approval_required: bool
    status_code: int = Field(description="HTTP status to answer the triggering request with")
    applied: bool = False
    instance: InstanceSummary | None = None
    message: str

    @classmethod
    def from_result(cls, result: Any, current_step: Step | None = None) -> "TriggerResponse":
        """Build the response from an Instance or an AppliedResult.

        Pass the instance's current step to include its name in the summary.
        """
        if isinstance(result, Instance):
            summary = InstanceSummary.model_validate(result)
            if current_step is not None:
                summary.current_step_name = current_step.label
            if result.is_pending:
                return cls(
                    approval_required=True,
                    status_code=status.HTTP_202_ACCEPTED,
                    instance=summary,
                    message="Change submitted for approval",
                )
            return cls(
                approval_required=False,
                status_code=status.HTTP_200_OK,
                applied=result.status in (InstanceStatus.COMPLETED.value, InstanceStatus.AUTO_APPROVED.value),
                instance=summary,
                message=f"Workflow finished with status '{result.status}'",
            )

        return cls(
            approval_required=False,
            status_code=status.HTTP_200_OK,
            applied=bool(result.applied),
            message="Change applied without approval" if not result.bypassed else "Approval bypassed",
        )
