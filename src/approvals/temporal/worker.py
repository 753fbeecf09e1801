"""
Temporal Worker - runs delayed resumes and parallel branches.

Run with:
    uv run python -m src.approvals.temporal.worker
    uv run python -m src.approvals.temporal.worker --bootstrap myapp.workflow_hooks

``--bootstrap`` imports modules that register hooks and action handlers,
so the worker sees the same callbacks as the process that triggers workflows.
"""

import argparse
import asyncio
import importlib
from collections.abc import Sequence

import uvicorn
from fastapi import FastAPI
from temporalio.client import Client
from temporalio.worker import Worker

from src.approvals.core.config import get_settings
from src.approvals.core.db import dispose_engine
from src.approvals.core.logging import get_logger, setup_logging
from src.approvals.core.redis import close_redis
from src.approvals.temporal.activities import resume_waiting_step, run_parallel_branch
from src.approvals.temporal.client import get_temporal_client, reset_temporal_client
from src.approvals.temporal.workflows import ResumeWaitingStepWorkflow, RunParallelBranchWorkflow

logger = get_logger(__name__)

WORKER_HEALTH_PORT = 8001


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the worker."""
    parser = argparse.ArgumentParser(description="Approval workflow Temporal worker")
    parser.add_argument(
        "--task-queue",
        default=None,
        help="Task queue to poll (default: TEMPORAL_TASK_QUEUE)",
    )
    parser.add_argument(
        "--bootstrap",
        action="append",
        default=[],
        metavar="MODULE",
        help="Module to import before starting (registers hooks and handlers); repeatable",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=WORKER_HEALTH_PORT,
        help=f"Port of the health server (default: {WORKER_HEALTH_PORT})",
    )
    return parser.parse_args(argv)


async def create_worker(
    client: Client,
    task_queue: str,
    *,
    max_concurrent_activities: int = 50,
    max_concurrent_workflow_tasks: int = 50,
) -> Worker:
    """Create a worker for the approval workflows and activities.

    Args:
        client: Temporal client
        task_queue: Task queue name
        max_concurrent_activities: Max concurrent activity executions
        max_concurrent_workflow_tasks: Max concurrent workflow task executions

    Returns:
        Configured Worker instance
    """
    return Worker(
        client,
        task_queue=task_queue,
        workflows=[ResumeWaitingStepWorkflow, RunParallelBranchWorkflow],
        activities=[resume_waiting_step, run_parallel_branch],
        max_concurrent_activities=max_concurrent_activities,
        max_concurrent_workflow_tasks=max_concurrent_workflow_tasks,
    )


async def run_health_server(task_queue: str, port: int = WORKER_HEALTH_PORT) -> None:
    """Run a lightweight health server for K8s liveness and readiness checks."""
    health_app = FastAPI(title="Approval Worker Health")

    @health_app.get("/health")
    async def health() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": "approvals-worker",
            "task_queue": task_queue,
        }

    @health_app.get("/ready")
    async def ready() -> dict[str, str]:
        return {"status": "ready"}

    config = uvicorn.Config(
        health_app,
        host="0.0.0.0",
        port=port,
        log_level="warning",
    )
    server = uvicorn.Server(config)
    logger.info("Starting health server", port=port)
    await server.serve()


async def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point for the Temporal worker."""
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings.debug)

    for module in args.bootstrap:
        importlib.import_module(module)
        logger.info("Bootstrap module imported", module=module)

    task_queue = args.task_queue or settings.temporal_task_queue
    client = await get_temporal_client()
    worker = await create_worker(client, task_queue)
    logger.info("Starting worker", task_queue=task_queue)

    try:
        await asyncio.gather(
            run_health_server(task_queue, args.health_port),
            worker.run(),
        )
    finally:
        reset_temporal_client()
        await close_redis()
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
