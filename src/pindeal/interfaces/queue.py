"""JobQueue protocol - durable at-least-once job delivery."""

from __future__ import annotations

from typing import Protocol

from pindeal.models.jobs import Job, QueuedJob


class JobQueue(Protocol):
    """Durable queue with leased delivery.

    A dequeued job stays invisible until it is acked, retried, buried or
    its lease expires; an expired lease makes it deliverable again.
    """

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def enqueue(self, job: Job, delay: float = 0) -> str:
        """Persist a job and return its id."""
        ...

    async def dequeue(self) -> QueuedJob | None:
        """Lease the next available job, or return None."""
        ...

    async def extend_lease(self, job_id: str, attempts: int) -> bool:
        """Keep a running job leased. False if the lease was lost."""
        ...

    async def ack(self, job_id: str) -> None:
        ...

    async def retry(self, job_id: str, error: str, delay: float) -> None:
        """Release the lease and make the job available again after ``delay``."""
        ...

    async def bury(self, job_id: str, error: str) -> None:
        """Give up on a job. It is kept for inspection but never redelivered."""
        ...

    async def depth(self) -> int:
        """Jobs queued or leased."""
        ...

    async def try_acquire_lease(self, name: str, holder: str, ttl: float) -> bool:
        """Claim a named lease for ``ttl`` seconds. False if someone else holds it."""
        ...

    async def has_open(self, job: Job) -> bool:
        """True if an identical job is queued or leased."""
        ...
