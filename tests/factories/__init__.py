"""Test data factories using polyfactory."""

from tests.factories.base import BaseFactory, generate_uuid, utc_now
from tests.factories.workflow import (
    AssigneeFactory,
    ExemptionFactory,
    StepFactory,
    TransitionFactory,
    WorkflowFactory,
)

__all__ = [
    # Base
    "BaseFactory",
    "generate_uuid",
    "utc_now",
    # Workflow definitions
    "AssigneeFactory",
    "ExemptionFactory",
    "StepFactory",
    "TransitionFactory",
    "WorkflowFactory",
]
