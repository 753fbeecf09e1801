"""WorkflowScheduler backed by Temporal."""

from datetime import datetime
from uuid import UUID

from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError
from temporalio.service import RPCError

from src.approvals.core.config import get_settings
from src.approvals.core.logging import get_logger
from src.approvals.temporal.activities import ResumeStepInput, RunBranchInput
from src.approvals.temporal.workflows import ResumeWaitingStepWorkflow, RunParallelBranchWorkflow

logger = get_logger(__name__)


def resume_workflow_id(instance_id: UUID, step_id: UUID, resume_at: datetime) -> str:
    return f"approvals-resume-{instance_id}-{step_id}-{int(resume_at.timestamp())}"


def branch_workflow_id(instance_id: UUID, group_id: str, branch_key: str) -> str:
    return f"approvals-branch-{instance_id}-{group_id}-{branch_key}"


class TemporalScheduler:
    """Starts one Temporal workflow per delayed resume or parallel branch.

    Workflow ids are derived from what they act on, so scheduling the same
    job twice starts it once.
    """

    def __init__(self, client: Client, task_queue: str | None = None):
        self.client = client
        self.task_queue = task_queue or get_settings().temporal_task_queue

    async def schedule_resume(self, instance_id: UUID, step_id: UUID, resume_at: datetime) -> bool:
        workflow_id = resume_workflow_id(instance_id, step_id, resume_at)
        try:
            await self.client.start_workflow(
                ResumeWaitingStepWorkflow.run,
                ResumeStepInput(
                    instance_id=str(instance_id),
                    step_id=str(step_id),
                    resume_at=resume_at.isoformat(),
                ),
                id=workflow_id,
                task_queue=self.task_queue,
            )
        except WorkflowAlreadyStartedError:
            logger.info("Resume already scheduled", workflow_id=workflow_id)
        except RPCError as e:
            logger.error("Failed to schedule resume", workflow_id=workflow_id, error=str(e))
            return False

        logger.info("Resume scheduled", workflow_id=workflow_id, resume_at=resume_at.isoformat())
        return True

    async def schedule_branch(self, instance_id: UUID, group_id: str, branch_key: str) -> bool:
        workflow_id = branch_workflow_id(instance_id, group_id, branch_key)
        try:
            await self.client.start_workflow(
                RunParallelBranchWorkflow.run,
                RunBranchInput(instance_id=str(instance_id), group_id=group_id, branch_key=branch_key),
                id=workflow_id,
                task_queue=self.task_queue,
            )
        except WorkflowAlreadyStartedError:
            logger.info("Branch already scheduled", workflow_id=workflow_id)
        except RPCError as e:
            logger.error("Failed to schedule branch", workflow_id=workflow_id, error=str(e))
            return False

        logger.info("Branch scheduled", workflow_id=workflow_id)
        return True
