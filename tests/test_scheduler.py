"""Job scheduler: retry policy, periodic triggers, worker lifecycle."""

from __future__ import annotations

import asyncio

from pindeal.errors import PermanentError
from pindeal.jobs.scheduler import JobScheduler
from pindeal.models.config import RetryConfig, WorkerConfig
from pindeal.models.jobs import CleanupFailedJob, MonitorDealsJob, ProcessPinJob, RenewExpiringJob
from pindeal.models.states import ContractStatus, RequestStatus
from tests.factories import SAMPLE_CID_V0, make_cid, make_pinned_request
from tests.mocks import unavailable


async def _submit(store, queue, cid=SAMPLE_CID_V0):
    request = await store.create_request("alice", cid, 30)
    job_id = await queue.enqueue(ProcessPinJob(request_id=request.id))
    return request.id, job_id


# ── Test 1: Success acks ────────────────────────────────────────────


async def test_successful_job_is_acked(scheduler, store, queue):
    request_id, job_id = await _submit(store, queue)

    await scheduler.execute(await queue.dequeue())
    assert (await queue.get_job_status(job_id))[0] == "done"
    assert (await store.get_request(request_id)).status == RequestStatus.PINNED
    assert scheduler.counters["acked"] == 1


# ── Test 2: Transient errors retry, then give up ────────────────────


async def test_transient_error_retries_with_backoff(scheduler, store, queue, clock, mock_network):
    request_id, job_id = await _submit(store, queue)
    mock_network.size_error = unavailable()

    await scheduler.execute(await queue.dequeue())
    status, attempts, error = await queue.get_job_status(job_id)
    assert status == "queued"
    assert "unreachable" in error
    assert (await store.get_request(request_id)).status == RequestStatus.PENDING

    # Backoff is 10s in the test config
    assert await queue.dequeue() is None
    clock.advance(10)
    assert (await queue.dequeue()).attempts == 2


async def test_exhausted_retries_fail_the_request(scheduler, store, queue, clock, mock_network):
    request_id, job_id = await _submit(store, queue)
    mock_network.size_error = unavailable()

    for _ in range(3):
        queued = await queue.dequeue()
        await scheduler.execute(queued)
        clock.advance(10)

    assert queued.attempts == 3
    assert (await queue.get_job_status(job_id))[0] == "dead"
    request = await store.get_request(request_id)
    assert request.status == RequestStatus.FAILED
    assert request.failure_reason == "collaborator_unavailable"
    assert scheduler.counters == {"acked": 0, "retried": 2, "buried": 1}


async def test_redelivery_past_max_attempts_gives_up(scheduler, store, queue, clock):
    request_id, job_id = await _submit(store, queue)

    # Three deliveries lost to expired leases
    for _ in range(3):
        await queue.dequeue()
        clock.advance(31)

    await scheduler.execute(await queue.dequeue())
    assert (await queue.get_job_status(job_id))[0] == "dead"
    assert (await store.get_request(request_id)).status == RequestStatus.FAILED


async def test_unexpected_exception_is_retried(store, queue, processor, monitor, renewal, cleanup):
    class ExplodingMonitor:
        async def run_pass(self):
            raise RuntimeError("boom")

    scheduler = JobScheduler(
        queue, store, processor, ExplodingMonitor(), renewal, cleanup,
        retry=RetryConfig(max_attempts=3, backoff_seconds=0),
    )
    job_id = await queue.enqueue(MonitorDealsJob())
    await scheduler.execute(await queue.dequeue())

    status, _, error = await queue.get_job_status(job_id)
    assert status == "queued"
    assert "boom" in error


async def test_permanent_error_buries_immediately(store, queue, processor, monitor, renewal, cleanup):
    class BrokenCleanup:
        async def run_pass(self):
            raise PermanentError("retention misconfigured")

    scheduler = JobScheduler(queue, store, processor, monitor, renewal, BrokenCleanup())
    job_id = await queue.enqueue(CleanupFailedJob())
    await scheduler.execute(await queue.dequeue())
    assert (await queue.get_job_status(job_id))[0] == "dead"


# ── Test 3: Periodic triggers ───────────────────────────────────────


async def test_trigger_fires_once_per_interval(scheduler, queue, clock, store, processor, monitor, renewal, cleanup):
    other = JobScheduler(queue, store, processor, monitor, renewal, cleanup, instance_id="scheduler-b")

    assert await scheduler.trigger(MonitorDealsJob(), 300)
    assert not await other.trigger(MonitorDealsJob(), 300)
    assert not await scheduler.trigger(MonitorDealsJob(), 300)
    assert await queue.depth() == 1

    clock.advance(300)
    assert await other.trigger(MonitorDealsJob(), 300)
    assert await queue.depth() == 2


async def test_triggers_are_independent(scheduler, queue):
    assert await scheduler.trigger(MonitorDealsJob(), 300)
    assert await scheduler.trigger(RenewExpiringJob(), 3600)
    assert await scheduler.trigger(CleanupFailedJob(), 21600)
    assert await queue.depth() == 3


async def test_periodic_jobs_run_their_manager(scheduler, store, queue, mock_ledger):
    _, contract = await make_pinned_request(store, status=ContractStatus.PENDING)
    mock_ledger.deal_states[contract.deal_handle] = "StorageDealActive"

    await scheduler.trigger(MonitorDealsJob(), 300)
    await scheduler.execute(await queue.dequeue())
    assert (await store.get_contract(contract.id)).status == ContractStatus.ACTIVE


# ── Test 4: Startup recovery ────────────────────────────────────────


async def test_requeue_pending_skips_open_jobs(scheduler, store, queue):
    await _submit(store, queue, make_cid(1))
    orphan = await store.create_request("alice", make_cid(2), 30)

    assert await scheduler.requeue_pending() == 1
    assert await queue.has_open(ProcessPinJob(request_id=orphan.id))
    assert await queue.depth() == 2
    assert await scheduler.requeue_pending() == 0


# ── Test 5: Worker lifecycle ────────────────────────────────────────


async def test_workers_drain_queue(scheduler, store, queue):
    ids = [(await _submit(store, queue, make_cid(n)))[0] for n in range(4)]

    await scheduler.start()
    assert scheduler.running
    try:
        for _ in range(200):
            statuses = [(await store.get_request(i)).status for i in ids]
            if all(s == RequestStatus.PINNED for s in statuses):
                break
            await asyncio.sleep(0.01)
    finally:
        await scheduler.stop()

    assert not scheduler.running
    statuses = [(await store.get_request(i)).status for i in ids]
    assert statuses == [RequestStatus.PINNED] * 4


async def test_stop_cancels_stuck_jobs(store, queue, processor, monitor, renewal, cleanup):
    started = asyncio.Event()

    class StuckMonitor:
        async def run_pass(self):
            started.set()
            await asyncio.sleep(3600)

    scheduler = JobScheduler(
        queue, store, processor, StuckMonitor(), renewal, cleanup,
        worker=WorkerConfig(concurrency=1, poll_interval=0.01, shutdown_timeout=0.05,
                            monitor_interval=3600, renewal_interval=3600, cleanup_interval=3600),
    )
    await scheduler.start()
    await asyncio.wait_for(started.wait(), timeout=5)
    await scheduler.stop()

    # The job's lease is still held; it will be redelivered after expiry
    assert await queue.depth() >= 1


# ── Test 6: Lease renewal ───────────────────────────────────────────


async def test_long_job_keeps_its_lease(store, queue, clock, processor, renewal, cleanup):
    release = asyncio.Event()
    runs = []

    class SlowMonitor:
        async def run_pass(self):
            runs.append(1)
            await release.wait()

    scheduler = JobScheduler(
        queue, store, processor, SlowMonitor(), renewal, cleanup,
        worker=WorkerConfig(lease_seconds=30, lease_renew_interval=0.01),
    )
    job_id = await queue.enqueue(MonitorDealsJob())
    task = asyncio.create_task(scheduler.execute(await queue.dequeue()))

    # Well past the original 30s lease, renewed along the way
    for _ in range(4):
        clock.advance(10)
        await asyncio.sleep(0.05)
    assert await queue.dequeue() is None

    release.set()
    await asyncio.wait_for(task, timeout=5)
    assert (await queue.get_job_status(job_id))[0] == "done"
    assert runs == [1]
