"""Typed job variants carried by the durable queue."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import ClassVar, Union

from pindeal.errors import PermanentError


@dataclass(frozen=True)
class ProcessPinJob:
    """Drive one pin request through the pin-to-deal pipeline."""

    kind: ClassVar[str] = "process_pin"

    request_id: str

    def payload(self) -> dict:
        return {"request_id": self.request_id}


@dataclass(frozen=True)
class MonitorDealsJob:
    """Reconcile live contracts against the ledger."""

    kind: ClassVar[str] = "monitor_deals"

    def payload(self) -> dict:
        return {}


@dataclass(frozen=True)
class RenewExpiringJob:
    """Create successor contracts for deals close to expiry."""

    kind: ClassVar[str] = "renew_expiring"

    def payload(self) -> dict:
        return {}


@dataclass(frozen=True)
class CleanupFailedJob:
    """Apply the retention action to old failed requests."""

    kind: ClassVar[str] = "cleanup_failed"

    def payload(self) -> dict:
        return {}


Job = Union[ProcessPinJob, MonitorDealsJob, RenewExpiringJob, CleanupFailedJob]


@dataclass(frozen=True)
class QueuedJob:
    """A job leased from the queue, with its delivery metadata."""

    job_id: str
    job: Job
    attempts: int  # deliveries so far, including this one
    last_error: str | None = None


def encode_job(job: Job) -> tuple[str, str]:
    """Return the (kind, payload JSON) pair stored for a job."""
    return job.kind, json.dumps(job.payload(), sort_keys=True)


def decode_job(kind: str, payload: str) -> Job:
    """Rebuild a job from its stored kind and payload."""
    try:
        data = json.loads(payload or "{}")
    except json.JSONDecodeError as exc:
        raise PermanentError(f"malformed payload for {kind}: {exc}") from exc

    if kind == ProcessPinJob.kind:
        request_id = data.get("request_id")
        if not isinstance(request_id, str) or not request_id:
            raise PermanentError("process_pin job without request_id")
        return ProcessPinJob(request_id=request_id)
    if kind == MonitorDealsJob.kind:
        return MonitorDealsJob()
    if kind == RenewExpiringJob.kind:
        return RenewExpiringJob()
    if kind == CleanupFailedJob.kind:
        return CleanupFailedJob()
    raise PermanentError(f"unknown job kind: {kind}")
