"""Integration test fixtures for database-backed engine operations.

Every test gets a fresh in-memory SQLite database (aiosqlite). A StaticPool
keeps the single connection alive so the schema survives between sessions.
Uses polyfactory for type-safe test data generation.
"""

from collections.abc import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import src.approvals.models  # noqa: F401 - registers the tables on SQLModel.metadata
from src.approvals.actions.registry import ActionHandlerRegistry, default_action_registry
from src.approvals.core import redis as redis_core
from src.approvals.core.db import enable_sqlite_savepoints, get_session
from src.approvals.hooks.registry import HookRegistry
from src.approvals.services import WorkflowEngine


@pytest.fixture(autouse=True)
async def _reset_redis_between_tests() -> AsyncGenerator[None]:
    """Reset Redis state between tests to prevent event loop issues.

    Redis clients hold references to their event loop. When pytest creates
    a new event loop for each test, stale Redis clients cause
    'Event loop is closed' errors.
    """
    redis_core.reset_redis_state()
    yield
    await redis_core.close_redis()


@pytest.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with every table created."""
    test_engine = enable_sqlite_savepoints(
        create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Provide a session configured like the application's.

    IMPORTANT: The session does not auto-commit. Engine operations commit
    their own transaction; test setup helpers commit explicitly.
    """
    async with get_session(engine) as session:
        yield session


@pytest.fixture
def hooks() -> HookRegistry:
    return HookRegistry()


@pytest.fixture
def actions() -> ActionHandlerRegistry:
    """Built-in handlers plus a ``stamp`` handler that always succeeds."""
    registry = default_action_registry()
    registry.register("stamp", lambda step: {"stamped": step.key})
    return registry


@pytest.fixture
def workflow_engine(
    db_session: AsyncSession, hooks: HookRegistry, actions: ActionHandlerRegistry
) -> WorkflowEngine:
    return WorkflowEngine(db_session, hooks=hooks, actions=actions)
