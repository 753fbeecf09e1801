"""Temporal Workflows - durable timers and retries around engine activities."""

import asyncio
from datetime import UTC, datetime, timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from src.approvals.temporal.activities import (
        ResumeStepInput,
        RunBranchInput,
        resume_waiting_step,
        run_parallel_branch,
    )


ACTIVITY_TIMEOUT = timedelta(minutes=2)


@workflow.defn
class ResumeWaitingStepWorkflow:
    """
    Sleep until the step's resume time, then resume the instance.

    The timer is durable: a worker restart does not lose or shorten it.
    """

    @workflow.run
    async def run(self, input: ResumeStepInput) -> bool:
        if input.resume_at:
            resume_at = datetime.fromisoformat(input.resume_at)
            if resume_at.tzinfo is None:
                resume_at = resume_at.replace(tzinfo=UTC)
            remaining = (resume_at - workflow.now()).total_seconds()
            if remaining > 0:
                await asyncio.sleep(remaining)

        return await workflow.execute_activity(
            resume_waiting_step,
            input,
            start_to_close_timeout=ACTIVITY_TIMEOUT,
            retry_policy=RetryPolicy(
                maximum_attempts=5,
                initial_interval=timedelta(seconds=2),
            ),
        )


@workflow.defn
class RunParallelBranchWorkflow:
    """Run one parallel branch; the activity releases the join when it is the last."""

    @workflow.run
    async def run(self, input: RunBranchInput) -> bool:
        return await workflow.execute_activity(
            run_parallel_branch,
            input,
            start_to_close_timeout=ACTIVITY_TIMEOUT,
            retry_policy=RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=1),
            ),
        )
