"""Tests for the trigger response contract."""

from uuid import uuid4

import pytest
from fastapi import status

from src.approvals.models import Instance, InstanceStatus
from src.approvals.schemas import TriggerResponse
from src.approvals.services.engine import AppliedResult
from tests.factories import StepFactory

pytestmark = pytest.mark.unit


class TestTriggerResponse:
    def test_pending_instance_is_accepted(self) -> None:
        """A pending instance should answer 202 with approval required."""
        instance = Instance(workflow_id=uuid4(), target_type="Post", target_id="1")

        response = TriggerResponse.from_result(instance)

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert response.approval_required is True
        assert response.applied is False
        assert response.instance is not None
        assert response.instance.id == instance.id
        assert response.instance.status is InstanceStatus.PENDING

    def test_summary_names_current_step(self) -> None:
        """The current step's label should be reported when the caller passes the step."""
        step = StepFactory.build(key="review", name={"en": "Editorial review"})
        instance = Instance(workflow_id=uuid4(), current_step_id=step.id)

        response = TriggerResponse.from_result(instance, current_step=step)

        assert response.instance is not None
        assert response.instance.current_step_id == step.id
        assert response.instance.current_step_name == "Editorial review"
        assert TriggerResponse.from_result(instance).instance.current_step_name is None

    def test_completed_instance_is_applied(self) -> None:
        """An instance completed by an auto chain should answer 200 and applied."""
        instance = Instance(workflow_id=uuid4(), status=InstanceStatus.COMPLETED.value)

        response = TriggerResponse.from_result(instance)

        assert response.status_code == status.HTTP_200_OK
        assert response.applied is True
        assert response.approval_required is False

    def test_cancelled_instance_not_applied(self) -> None:
        """An instance cancelled on the way should not report the change as applied."""
        instance = Instance(workflow_id=uuid4(), status=InstanceStatus.CANCELLED.value)

        response = TriggerResponse.from_result(instance)

        assert response.applied is False
        assert response.message == "Workflow finished with status 'cancelled'"

    @pytest.mark.parametrize(
        ("bypassed", "message"),
        [(False, "Change applied without approval"), (True, "Approval bypassed")],
    )
    def test_applied_result(self, bypassed: bool, message: str) -> None:
        """Direct and bypassed applications should answer 200 without an instance."""
        result = AppliedResult(
            target=None, applied=True, instance=Instance(workflow_id=uuid4()), bypassed=bypassed
        )

        response = TriggerResponse.from_result(result)

        assert response.status_code == status.HTTP_200_OK
        assert response.applied is True
        assert response.instance is None
        assert response.message == message
