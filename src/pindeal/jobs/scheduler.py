"""Job scheduler - worker pool, retry policy and periodic triggers."""

from __future__ import annotations

import asyncio
import logging
import uuid

from pindeal.errors import PermanentError, TransientCollaboratorError
from pindeal.interfaces.queue import JobQueue
from pindeal.interfaces.store import StateStore
from pindeal.managers.cleanup import CleanupManager
from pindeal.managers.monitor import DealMonitor
from pindeal.managers.renewal import RenewalManager
from pindeal.models.config import RetryConfig, WorkerConfig
from pindeal.models.jobs import (
    CleanupFailedJob,
    Job,
    MonitorDealsJob,
    ProcessPinJob,
    QueuedJob,
    RenewExpiringJob,
)
from pindeal.pipeline.processor import PinProcessor

log = logging.getLogger(__name__)

# Trigger leases run slightly short of the interval so the holder's own
# next tick is never refused by its previous lease.
LEASE_FRACTION = 0.9


class JobScheduler:
    """Pulls jobs from the durable queue and runs them on a bounded pool.

    Also owns one timer per periodic manager. A timer only enqueues when
    it wins the named lease in the queue database, so several schedulers
    sharing that database fire each trigger once per interval.
    """

    def __init__(
        self,
        queue: JobQueue,
        store: StateStore,
        processor: PinProcessor,
        monitor: DealMonitor,
        renewal: RenewalManager,
        cleanup: CleanupManager,
        worker: WorkerConfig | None = None,
        retry: RetryConfig | None = None,
        instance_id: str | None = None,
    ) -> None:
        self._queue = queue
        self._store = store
        self._processor = processor
        self._monitor = monitor
        self._renewal = renewal
        self._cleanup = cleanup
        self._worker = worker or WorkerConfig()
        self._retry = retry or RetryConfig()
        self.instance_id = instance_id or uuid.uuid4().hex

        self._running = False
        self._stopping = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._timers: list[asyncio.Task] = []
        self.counters = {"acked": 0, "retried": 0, "buried": 0}

    @property
    def running(self) -> bool:
        return self._running

    # ── Lifecycle ─────────────────────────────────────────

    async def start(self) -> None:
        self._running = True
        self._stopping.clear()

        for n in range(self._worker.concurrency):
            self._workers.append(asyncio.create_task(self._worker_loop(n)))

        periodic = (
            (MonitorDealsJob, self._worker.monitor_interval),
            (RenewExpiringJob, self._worker.renewal_interval),
            (CleanupFailedJob, self._worker.cleanup_interval),
        )
        for job_cls, interval in periodic:
            self._timers.append(asyncio.create_task(self._timer_loop(job_cls, interval)))

        log.info(
            "Scheduler %s started: %d workers, lease %ds",
            self.instance_id[:8], self._worker.concurrency, self._worker.lease_seconds,
        )

    async def stop(self, timeout: float | None = None) -> None:
        """Stop dequeuing and wait for in-flight jobs.

        Jobs still running after ``timeout`` are cancelled; their leases
        expire and they are delivered again later.
        """
        if timeout is None:
            timeout = self._worker.shutdown_timeout
        self._running = False
        self._stopping.set()

        for task in self._timers:
            task.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers.clear()

        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=timeout)
            if pending:
                log.warning("Cancelling %d in-flight jobs after %ss", len(pending), timeout)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        self._workers.clear()
        log.info("Scheduler %s stopped", self.instance_id[:8])

    async def _idle(self, seconds: float) -> bool:
        """Sleep unless stopping. Returns True if the scheduler is stopping."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    # ── Workers ───────────────────────────────────────────

    async def _worker_loop(self, n: int) -> None:
        while self._running:
            try:
                queued = await self._queue.dequeue()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.error("Worker %d dequeue error: %s", n, exc, exc_info=True)
                if await self._idle(self._worker.poll_interval):
                    break
                continue

            if queued is None:
                if await self._idle(self._worker.poll_interval):
                    break
                continue

            await self.execute(queued)

    async def execute(self, queued: QueuedJob) -> None:
        """Run one delivered job and settle it with the queue."""
        job = queued.job
        if queued.attempts > self._retry.max_attempts:
            # Earlier deliveries were lost to expired leases
            await self._give_up(queued, "collaborator_unavailable", queued.last_error or "lease expired")
            return

        log.debug("Running %s job %s (attempt %d)", job.kind, queued.job_id, queued.attempts)
        try:
            await self._run_leased(queued)
        except asyncio.CancelledError:
            raise
        except TransientCollaboratorError as exc:
            await self._retry_or_give_up(queued, exc.code, str(exc))
        except PermanentError as exc:
            log.error("Job %s (%s) failed permanently: %s", queued.job_id, job.kind, exc)
            await self._give_up(queued, exc.code, str(exc))
        except Exception as exc:
            log.error("Job %s (%s) crashed: %s", queued.job_id, job.kind, exc, exc_info=True)
            await self._retry_or_give_up(queued, "internal_error", repr(exc))
        else:
            await self._queue.ack(queued.job_id)
            self.counters["acked"] += 1

    async def _run_leased(self, queued: QueuedJob) -> None:
        heartbeat = asyncio.create_task(self._keep_leased(queued))
        try:
            await self._dispatch(queued)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)

    async def _keep_leased(self, queued: QueuedJob) -> None:
        """Extend the job's lease every third of ``lease_seconds`` until cancelled."""
        interval = self._worker.lease_renew_interval or self._worker.lease_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                held = await self._queue.extend_lease(queued.job_id, queued.attempts)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.warning("Could not extend lease on job %s: %s", queued.job_id, exc)
                continue
            if not held:
                log.warning(
                    "Lost lease on job %s (%s), another worker may run it",
                    queued.job_id, queued.job.kind,
                )
                return

    async def _dispatch(self, queued: QueuedJob) -> None:
        job = queued.job
        if isinstance(job, ProcessPinJob):
            outcome = await self._processor.process(job.request_id, queued.job_id)
            log.debug("Job %s: request %s %s", queued.job_id, job.request_id, outcome.value)
        elif isinstance(job, MonitorDealsJob):
            await self._monitor.run_pass()
        elif isinstance(job, RenewExpiringJob):
            await self._renewal.run_pass()
        elif isinstance(job, CleanupFailedJob):
            await self._cleanup.run_pass()
        else:
            raise PermanentError(f"no handler for job kind {job.kind}")

    async def _retry_or_give_up(self, queued: QueuedJob, reason: str, message: str) -> None:
        if queued.attempts >= self._retry.max_attempts:
            await self._give_up(queued, reason, message)
            return
        log.warning(
            "Job %s (%s) attempt %d/%d failed, retrying in %ds: %s",
            queued.job_id, queued.job.kind, queued.attempts,
            self._retry.max_attempts, self._retry.backoff_seconds, message,
        )
        await self._queue.retry(queued.job_id, message, self._retry.backoff_seconds)
        self.counters["retried"] += 1

    async def _give_up(self, queued: QueuedJob, reason: str, message: str) -> None:
        await self._queue.bury(queued.job_id, message)
        self.counters["buried"] += 1
        job = queued.job
        log.error(
            "Job %s (%s) buried after %d attempts: %s",
            queued.job_id, job.kind, queued.attempts, message,
        )
        if isinstance(job, ProcessPinJob):
            await self._processor.fail_exhausted(job.request_id, queued.job_id, reason, message)

    # ── Periodic triggers ─────────────────────────────────

    async def _timer_loop(self, job_cls: type, interval: float) -> None:
        while self._running:
            try:
                await self.trigger(job_cls(), interval)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.error("Trigger %s error: %s", job_cls.kind, exc, exc_info=True)
            if await self._idle(interval):
                break

    async def trigger(self, job: Job, interval: float) -> bool:
        """Enqueue a periodic job if this instance wins its lease."""
        acquired = await self._queue.try_acquire_lease(
            f"periodic:{job.kind}", self.instance_id, max(interval * LEASE_FRACTION, 1),
        )
        if not acquired:
            log.debug("Trigger %s held by another instance", job.kind)
            return False
        job_id = await self._queue.enqueue(job)
        log.debug("Triggered %s as job %s", job.kind, job_id)
        return True

    async def requeue_pending(self, limit: int = 100) -> int:
        """Enqueue processing for pending requests that have no open job."""
        count = 0
        for request in await self._store.get_pending_requests(limit):
            job = ProcessPinJob(request_id=request.id)
            if await self._queue.has_open(job):
                continue
            await self._queue.enqueue(job)
            count += 1
        if count:
            log.info("Re-enqueued %d pending requests", count)
        return count
