"""SQLite implementation of the JobQueue protocol."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import aiosqlite

from pindeal.errors import PermanentError
from pindeal.models.jobs import Job, QueuedJob, decode_job, encode_job

log = logging.getLogger(__name__)

SCHEMA = """
-- Durable job queue
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'queued',
    attempts INTEGER NOT NULL DEFAULT 0,
    available_at REAL NOT NULL,
    leased_until REAL,
    last_error TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_ready ON jobs(status, available_at);

-- Named leases for periodic triggers shared between instances
CREATE TABLE IF NOT EXISTS leases (
    name TEXT PRIMARY KEY,
    holder TEXT NOT NULL,
    expires_at REAL NOT NULL
);
"""

QUEUED = "queued"
LEASED = "leased"
DONE = "done"
DEAD = "dead"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteJobQueue:
    """Leased, at-least-once job queue in its own SQLite database.

    ``clock`` returns wall-clock seconds; several instances pointed at
    the same file must agree on it.
    """

    def __init__(
        self,
        db_path: str,
        lease_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = db_path
        self._lease_seconds = lease_seconds
        self._clock = clock
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Queue not initialized. Call initialize() first."
        return self._db

    # ── Producer side ──────────────────────────────────────

    async def enqueue(self, job: Job, delay: float = 0) -> str:
        job_id = str(uuid.uuid4())
        kind, payload = encode_job(job)
        async with self._lock:
            await self.db.execute(
                "INSERT INTO jobs (id, kind, payload, status, attempts, available_at, created_at)"
                " VALUES (?, ?, ?, ?, 0, ?, ?)",
                (job_id, kind, payload, QUEUED, self._clock() + delay, _now()),
            )
            await self.db.commit()
        log.debug("Enqueued %s job %s", kind, job_id)
        return job_id

    # ── Consumer side ──────────────────────────────────────

    async def dequeue(self) -> QueuedJob | None:
        """Lease the oldest ready job.

        Jobs whose lease ran out are ready again. A job that cannot be
        decoded is buried and the next one is tried.
        """
        while True:
            async with self._lock:
                row = await self._lease_next()
            if row is None:
                return None
            try:
                job = decode_job(row["kind"], row["payload"])
            except PermanentError as exc:
                log.error("Burying undecodable job %s: %s", row["id"], exc)
                await self.bury(row["id"], str(exc))
                continue
            return QueuedJob(
                job_id=row["id"],
                job=job,
                attempts=row["attempts"] + 1,
                last_error=row["last_error"],
            )

    async def _lease_next(self) -> aiosqlite.Row | None:
        now = self._clock()
        async with self.db.execute(
            "SELECT * FROM jobs"
            " WHERE (status=? AND available_at <= ?) OR (status=? AND leased_until <= ?)"
            " ORDER BY available_at, created_at LIMIT 1",
            (QUEUED, now, LEASED, now),
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None

        # Conditional on the row still being ready; another instance may
        # have leased it between the SELECT and here.
        cur = await self.db.execute(
            "UPDATE jobs SET status=?, leased_until=?, attempts=attempts+1"
            " WHERE id=? AND ((status=? AND available_at <= ?) OR (status=? AND leased_until <= ?))",
            (LEASED, now + self._lease_seconds, row["id"], QUEUED, now, LEASED, now),
        )
        await self.db.commit()
        if cur.rowcount == 0:
            return None
        if row["status"] == LEASED:
            log.warning("Lease expired for job %s (%s), redelivering", row["id"], row["kind"])
        return row

    async def extend_lease(self, job_id: str, attempts: int) -> bool:
        """Push a held lease out by another ``lease_seconds``.

        ``attempts`` is the delivery count the caller was handed; once the
        job has been redelivered (or settled) the extension is refused.
        """
        async with self._lock:
            cur = await self.db.execute(
                "UPDATE jobs SET leased_until=?"
                " WHERE id=? AND status=? AND attempts=?",
                (self._clock() + self._lease_seconds, job_id, LEASED, attempts),
            )
            await self.db.commit()
        return cur.rowcount > 0

    async def ack(self, job_id: str) -> None:
        await self._settle(job_id, DONE, None, None)

    async def retry(self, job_id: str, error: str, delay: float) -> None:
        await self._settle(job_id, QUEUED, error, self._clock() + delay)

    async def bury(self, job_id: str, error: str) -> None:
        await self._settle(job_id, DEAD, error, None)

    async def _settle(
        self, job_id: str, status: str, error: str | None, available_at: float | None
    ) -> None:
        async with self._lock:
            if available_at is None:
                await self.db.execute(
                    "UPDATE jobs SET status=?, leased_until=NULL,"
                    " last_error=COALESCE(?, last_error) WHERE id=?",
                    (status, error, job_id),
                )
            else:
                await self.db.execute(
                    "UPDATE jobs SET status=?, leased_until=NULL, last_error=?,"
                    " available_at=? WHERE id=?",
                    (status, error, available_at, job_id),
                )
            await self.db.commit()

    # ── Introspection ──────────────────────────────────────

    async def depth(self) -> int:
        async with self.db.execute(
            "SELECT COUNT(*) AS c FROM jobs WHERE status IN (?, ?)", (QUEUED, LEASED)
        ) as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0

    async def has_open(self, job: Job) -> bool:
        kind, payload = encode_job(job)
        async with self.db.execute(
            "SELECT 1 FROM jobs WHERE kind=? AND payload=? AND status IN (?, ?) LIMIT 1",
            (kind, payload, QUEUED, LEASED),
        ) as cur:
            return await cur.fetchone() is not None

    async def get_job_status(self, job_id: str) -> tuple[str, int, str | None] | None:
        """(status, attempts, last_error) for a job, or None."""
        async with self.db.execute(
            "SELECT status, attempts, last_error FROM jobs WHERE id=?", (job_id,)
        ) as cur:
            row = await cur.fetchone()
            if row is None:
                return None
            return row["status"], row["attempts"], row["last_error"]

    # ── Trigger leases ─────────────────────────────────────

    async def try_acquire_lease(self, name: str, holder: str, ttl: float) -> bool:
        now = self._clock()
        async with self._lock:
            cur = await self.db.execute(
                "INSERT INTO leases (name, holder, expires_at) VALUES (?, ?, ?)"
                " ON CONFLICT(name) DO UPDATE SET"
                " holder=excluded.holder, expires_at=excluded.expires_at"
                " WHERE leases.expires_at <= ?",
                (name, holder, now + ttl, now),
            )
            await self.db.commit()
        return cur.rowcount > 0
