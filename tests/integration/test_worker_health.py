"""Tests for the worker's health server."""

import asyncio
import contextlib
import socket
from collections.abc import AsyncGenerator

import pytest
from httpx import AsyncClient

from src.approvals.temporal.worker import run_health_server

pytestmark = pytest.mark.integration


def get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        return s.getsockname()[1]


@pytest.fixture
async def health_client() -> AsyncGenerator[AsyncClient]:
    """Run the health server for queue 'approvals-test' and yield a client bound to it."""
    port = get_free_port()
    task = asyncio.create_task(run_health_server("approvals-test", port))
    # uvicorn needs a moment to bind
    await asyncio.sleep(0.5)
    try:
        async with AsyncClient(base_url=f"http://localhost:{port}") as client:
            yield client
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


class TestHealthServer:
    async def test_health_reports_task_queue(self, health_client: AsyncClient) -> None:
        """/health should identify the worker and the queue it polls."""
        response = await health_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "service": "approvals-worker",
            "task_queue": "approvals-test",
        }

    async def test_ready(self, health_client: AsyncClient) -> None:
        """/ready should answer once the server is up."""
        response = await health_client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    async def test_unknown_route(self, health_client: AsyncClient) -> None:
        """Only the health routes are served."""
        response = await health_client.get("/workflows")

        assert response.status_code == 404
