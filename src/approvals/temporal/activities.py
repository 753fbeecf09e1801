"""
Temporal Activities - run engine operations in their own session.

Both activities are idempotent: the engine discards stale resumes and
finished branches, so a retried activity is a no-op.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from temporalio import activity

from src.approvals.core.db import get_session
from src.approvals.services.engine import WorkflowEngine

if TYPE_CHECKING:
    from src.approvals.temporal.scheduler import TemporalScheduler


@dataclass
class ResumeStepInput:
    instance_id: str
    step_id: str
    resume_at: str | None = None  # ISO datetime, naive UTC


@dataclass
class RunBranchInput:
    instance_id: str
    group_id: str
    branch_key: str


async def _engine_scheduler() -> "TemporalScheduler":
    # Imported here: the scheduler module imports the workflows, which import this module.
    from src.approvals.temporal.client import get_temporal_client
    from src.approvals.temporal.scheduler import TemporalScheduler

    return TemporalScheduler(await get_temporal_client())


@activity.defn
async def resume_waiting_step(input: ResumeStepInput) -> bool:
    """
    Continue an instance suspended on a waiting step.

    Args:
        input: ResumeStepInput with the instance and the step it waits on

    Returns:
        True if the instance was resumed, False for a stale signal
    """
    scheduler = await _engine_scheduler()
    async with get_session() as session:
        engine = WorkflowEngine(session, scheduler=scheduler)
        resumed = await engine.resume(UUID(input.instance_id), UUID(input.step_id))

    activity.logger.info(f"Resume of instance {input.instance_id}: {'done' if resumed else 'discarded'}")
    return resumed


@activity.defn
async def run_parallel_branch(input: RunBranchInput) -> bool:
    """
    Execute one auto-executable parallel branch, then try to release the join.

    Returns:
        True if the branch reached a terminal status
    """
    scheduler = await _engine_scheduler()
    async with get_session() as session:
        engine = WorkflowEngine(session, scheduler=scheduler)
        return await engine.run_branch(UUID(input.instance_id), input.group_id, input.branch_key)
