from src.approvals.services.auto_step_executor import AutoStepExecutor
from src.approvals.services.bypass import BypassResolver
from src.approvals.services.engine import AppliedResult, WorkflowEngine
from src.approvals.services.parallel import ParallelCoordinator
from src.approvals.services.scheduling import WorkflowScheduler
from src.approvals.services.validator import WorkflowValidator

__all__ = [
    "AppliedResult",
    "AutoStepExecutor",
    "BypassResolver",
    "ParallelCoordinator",
    "WorkflowEngine",
    "WorkflowScheduler",
    "WorkflowValidator",
]
