"""Durable job queue: leasing, redelivery, retry and trigger leases."""

from __future__ import annotations

from pindeal.jobs.queue import SQLiteJobQueue
from pindeal.models.jobs import MonitorDealsJob, ProcessPinJob


async def test_enqueue_dequeue_ack(queue):
    job_id = await queue.enqueue(ProcessPinJob(request_id="r1"))
    assert await queue.depth() == 1

    queued = await queue.dequeue()
    assert queued.job_id == job_id
    assert queued.job == ProcessPinJob(request_id="r1")
    assert queued.attempts == 1

    # Leased jobs are not handed out twice
    assert await queue.dequeue() is None

    await queue.ack(job_id)
    assert await queue.depth() == 0
    assert (await queue.get_job_status(job_id))[0] == "done"


async def test_dequeue_fifo(queue, clock):
    first = await queue.enqueue(ProcessPinJob(request_id="r1"))
    clock.advance(1)
    second = await queue.enqueue(ProcessPinJob(request_id="r2"))

    assert (await queue.dequeue()).job_id == first
    assert (await queue.dequeue()).job_id == second


async def test_expired_lease_is_redelivered(queue, clock):
    job_id = await queue.enqueue(ProcessPinJob(request_id="r1"))
    await queue.dequeue()

    clock.advance(29)
    assert await queue.dequeue() is None

    clock.advance(2)
    redelivered = await queue.dequeue()
    assert redelivered.job_id == job_id
    assert redelivered.attempts == 2


async def test_retry_delays_next_delivery(queue, clock):
    job_id = await queue.enqueue(ProcessPinJob(request_id="r1"))
    await queue.dequeue()
    await queue.retry(job_id, "ipfs unreachable", delay=10)

    assert await queue.dequeue() is None
    clock.advance(10)
    again = await queue.dequeue()
    assert again.attempts == 2
    assert again.last_error == "ipfs unreachable"


async def test_delayed_enqueue(queue, clock):
    await queue.enqueue(MonitorDealsJob(), delay=5)
    assert await queue.dequeue() is None
    clock.advance(5)
    assert (await queue.dequeue()).job == MonitorDealsJob()


async def test_bury_removes_from_queue(queue):
    job_id = await queue.enqueue(ProcessPinJob(request_id="r1"))
    await queue.dequeue()
    await queue.bury(job_id, "content_unavailable")

    assert await queue.depth() == 0
    assert await queue.get_job_status(job_id) == ("dead", 1, "content_unavailable")


async def test_undecodable_job_is_buried_and_skipped(queue, clock):
    await queue.db.execute(
        "INSERT INTO jobs (id, kind, payload, status, attempts, available_at, created_at)"
        " VALUES ('bad', 'no_such_kind', '{}', 'queued', 0, ?, '')",
        (clock() - 1,),
    )
    await queue.db.commit()
    good = await queue.enqueue(ProcessPinJob(request_id="r1"))

    assert (await queue.dequeue()).job_id == good
    status, _, error = await queue.get_job_status("bad")
    assert status == "dead"
    assert "no_such_kind" in error


async def test_has_open(queue):
    job = ProcessPinJob(request_id="r1")
    assert not await queue.has_open(job)
    job_id = await queue.enqueue(job)
    assert await queue.has_open(job)
    assert not await queue.has_open(ProcessPinJob(request_id="r2"))

    await queue.dequeue()
    await queue.ack(job_id)
    assert not await queue.has_open(job)


async def test_extend_lease_is_fenced_by_delivery(queue, clock):
    job_id = await queue.enqueue(ProcessPinJob(request_id="r1"))
    first = await queue.dequeue()

    clock.advance(20)
    assert await queue.extend_lease(job_id, first.attempts)
    clock.advance(20)
    # Held until t+50 now, past the original 30s lease
    assert await queue.dequeue() is None

    clock.advance(11)
    second = await queue.dequeue()
    assert second.attempts == 2
    assert not await queue.extend_lease(job_id, first.attempts)
    assert await queue.extend_lease(job_id, second.attempts)

    await queue.ack(job_id)
    assert not await queue.extend_lease(job_id, second.attempts)


# ── Trigger leases ──────────────────────────────────────────────────


async def test_lease_exclusive_until_expiry(queue, clock):
    assert await queue.try_acquire_lease("periodic:monitor_deals", "a", 60)
    assert not await queue.try_acquire_lease("periodic:monitor_deals", "b", 60)
    assert not await queue.try_acquire_lease("periodic:monitor_deals", "a", 60)

    # Other names are independent
    assert await queue.try_acquire_lease("periodic:cleanup_failed", "b", 60)

    clock.advance(60)
    assert await queue.try_acquire_lease("periodic:monitor_deals", "b", 60)


async def test_two_queues_share_one_file(tmp_path, clock):
    path = str(tmp_path / "queue.db")
    a = SQLiteJobQueue(path, lease_seconds=30, clock=clock)
    b = SQLiteJobQueue(path, lease_seconds=30, clock=clock)
    await a.initialize()
    await b.initialize()
    try:
        await a.enqueue(ProcessPinJob(request_id="r1"))
        assert (await b.dequeue()).job == ProcessPinJob(request_id="r1")
        assert await a.dequeue() is None

        assert await a.try_acquire_lease("periodic:renew_expiring", "a", 60)
        assert not await b.try_acquire_lease("periodic:renew_expiring", "b", 60)
    finally:
        await a.close()
        await b.close()
