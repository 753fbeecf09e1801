"""Distributed lock for the parallel join barrier.

Two branches finishing at nearly the same time must not both conclude
they are the one to release the join. The coordinator re-checks the
barrier inside this lock; the lock is a redis-py ``Lock`` when Redis is
available and a no-op otherwise (the caller's row lock still applies).
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

from redis.exceptions import LockError

from src.approvals.core import redis as redis_core
from src.approvals.core.config import get_settings
from src.approvals.core.exceptions import WorkflowError
from src.approvals.core.logging import get_logger

logger = get_logger(__name__)

PREFIX_JOIN_LOCK = "approvals:join_lock"

_POLL_INTERVAL_SECONDS = 0.05


class LockTimeoutError(WorkflowError):
    """The join lock stayed held by another worker past the wait budget."""


def join_lock_key(instance_id: UUID, group_id: str) -> str:
    return f"{PREFIX_JOIN_LOCK}:{instance_id}:{group_id}"


@asynccontextmanager
async def join_lock(
    instance_id: UUID,
    group_id: str,
    wait_seconds: float | None = None,
) -> AsyncGenerator[bool]:
    """Hold the join lock for one parallel group.

    Args:
        instance_id: Instance owning the group.
        group_id: The fork's group id.
        wait_seconds: How long to wait for a held lock (defaults to the TTL).

    Yields:
        True when a Redis lock is held, False when Redis is unavailable.

    Raises:
        LockTimeoutError: If the lock could not be acquired in time.
    """
    redis = await redis_core.get_redis()
    if redis is None:
        yield False
        return

    ttl = get_settings().join_lock_ttl_seconds
    key = join_lock_key(instance_id, group_id)
    lock = redis.lock(
        key,
        timeout=ttl,
        sleep=_POLL_INTERVAL_SECONDS,
        blocking_timeout=wait_seconds if wait_seconds is not None else ttl,
    )

    if not await lock.acquire():
        logger.warning("Join lock wait timed out", key=key)
        raise LockTimeoutError(f"Timed out waiting for join lock on group '{group_id}'")

    try:
        yield True
    finally:
        try:
            await lock.release()
        except LockError as e:
            # Expired and possibly re-acquired elsewhere; the token check left it alone
            logger.warning("Join lock lost before release", key=key, error=str(e))
