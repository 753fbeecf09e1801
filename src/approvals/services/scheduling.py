"""Contract for the external job facility that resumes suspended work."""

from datetime import datetime
from typing import Protocol
from uuid import UUID


class WorkflowScheduler(Protocol):
    """Hands suspended work to background workers.

    Both methods return True when the job was accepted. The engine only
    calls them after its transaction has committed, so workers always see
    the bookkeeping they are asked to act on.
    """

    async def schedule_resume(self, instance_id: UUID, step_id: UUID, resume_at: datetime) -> bool:
        """Resume ``instance_id`` waiting on ``step_id`` at ``resume_at`` (naive UTC)."""
        ...

    async def schedule_branch(self, instance_id: UUID, group_id: str, branch_key: str) -> bool:
        """Run one auto-executable parallel branch."""
        ...
