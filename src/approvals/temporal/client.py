"""Temporal connection shared by the worker and its activities.

The worker polls its task queue over this connection, and the activities
schedule follow-up resumes and branches over the same one.
"""

from temporalio.client import Client

from src.approvals.core.config import get_settings
from src.approvals.core.logging import get_logger

logger = get_logger(__name__)

_client: Client | None = None


async def get_temporal_client() -> Client:
    """Connect on first use; later calls reuse the connection."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = await Client.connect(settings.temporal_host, namespace=settings.temporal_namespace)
        logger.info("Temporal client connected", host=settings.temporal_host, namespace=settings.temporal_namespace)
    return _client


def reset_temporal_client() -> None:
    """Drop the cached client so the next call reconnects."""
    global _client
    _client = None
