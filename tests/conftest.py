"""Root test fixtures shared across all test types.

This conftest contains fixtures that can be used by both unit and integration tests.
Database-specific fixtures are in tests/integration/conftest.py.
"""

import os

# Set APP_ENV to testing and use an in-memory database before any app imports
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# ruff: noqa: E402 - Imports must be after env var setup
from collections.abc import AsyncGenerator, Generator

import pytest
from fakeredis import aioredis as fakeredis_aio
from redis.asyncio import Redis

from src.approvals.actions.handlers import reset_decision_resolvers
from src.approvals.actions.registry import reset_action_registry
from src.approvals.actions.scripts import reset_script_registry
from src.approvals.core import redis as redis_core
from src.approvals.core.config import get_settings
from src.approvals.hooks.registry import reset_hook_registry

# Clear settings cache to ensure test environment variables are picked up
get_settings.cache_clear()


# --- Registry Fixtures ---


@pytest.fixture(autouse=True)
def reset_registries() -> Generator[None]:
    """Give every test empty process-wide hook, handler and script registries."""
    reset_hook_registry()
    reset_action_registry()
    reset_script_registry()
    reset_decision_resolvers()
    yield
    reset_hook_registry()
    reset_action_registry()
    reset_script_registry()
    reset_decision_resolvers()


@pytest.fixture
def settings_override(monkeypatch: pytest.MonkeyPatch) -> Generator[pytest.MonkeyPatch]:
    """Set environment variables for Settings; the cache is cleared before and after."""
    get_settings.cache_clear()
    yield monkeypatch
    monkeypatch.undo()
    get_settings.cache_clear()


# --- Redis Test Fixtures (shared) ---


@pytest.fixture
async def fake_redis() -> AsyncGenerator[Redis]:
    """Provides a fakeredis client for testing.

    Returns an in-memory Redis implementation that behaves like
    a real Redis server but doesn't require external dependencies.
    """
    client = fakeredis_aio.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def mock_redis(fake_redis: Redis, monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[Redis]:
    """Patches get_redis() to return fakeredis client."""
    redis_core.reset_redis_state()

    async def _get_fake_redis() -> Redis:
        return fake_redis

    monkeypatch.setattr("src.approvals.core.redis.get_redis", _get_fake_redis)
    yield fake_redis
    redis_core.reset_redis_state()


@pytest.fixture
async def mock_redis_unavailable(monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[None]:
    """Patches get_redis() to return None (simulates Redis unavailable)."""
    redis_core.reset_redis_state()

    async def _get_none() -> None:
        return None

    monkeypatch.setattr("src.approvals.core.redis.get_redis", _get_none)
    yield
    redis_core.reset_redis_state()
