from src.approvals.schemas.workflow import InstanceSummary, TriggerResponse

__all__ = [
    "InstanceSummary",
    "TriggerResponse",
]
