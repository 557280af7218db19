"""SQLite implementation of the StateStore protocol."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import aiosqlite

from pindeal.models.records import ActivityRecord, Contract, PinRequest
from pindeal.models.states import ContractStatus, RequestStatus

SCHEMA = """
-- User pin requests
CREATE TABLE IF NOT EXISTS requests (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    cid TEXT NOT NULL,
    duration_days INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    size_bytes INTEGER NOT NULL DEFAULT 0,
    price TEXT NOT NULL DEFAULT '0',
    failure_reason TEXT,
    archived_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_requests_owner ON requests(owner, created_at);
CREATE INDEX IF NOT EXISTS idx_requests_status ON requests(status);
CREATE INDEX IF NOT EXISTS idx_requests_cid ON requests(cid);

-- Storage deals negotiated for requests
CREATE TABLE IF NOT EXISTS contracts (
    id TEXT PRIMARY KEY,
    request_id TEXT NOT NULL REFERENCES requests(id),
    deal_handle TEXT NOT NULL DEFAULT '',
    provider_id TEXT NOT NULL,
    start_epoch INTEGER NOT NULL,
    end_epoch INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    storage_price TEXT NOT NULL DEFAULT '0',
    retrieval_cost TEXT NOT NULL DEFAULT '0',
    parent_contract_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK (end_epoch > start_epoch)
);
CREATE INDEX IF NOT EXISTS idx_contracts_request ON contracts(request_id);
CREATE INDEX IF NOT EXISTS idx_contracts_status ON contracts(status);
CREATE INDEX IF NOT EXISTS idx_contracts_parent ON contracts(parent_contract_id);

-- Activity log
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    request_id TEXT,
    job_id TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at);
"""

# A renewal successor in one of these states means the parent is covered
_SUCCESSOR_COVERS = ("pending", "published", "active", "expired")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStateStore:
    """SQLite-backed implementation of the StateStore protocol.

    One connection is shared by every caller. Writes take ``_write_lock``
    so a multi-statement transaction is never interleaved with another
    coroutine's statements.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

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
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    async def ping(self) -> bool:
        async with self.db.execute("SELECT 1") as cur:
            return await cur.fetchone() is not None

    # ── Requests ───────────────────────────────────────────

    async def create_request(self, owner: str, cid: str, duration_days: int) -> PinRequest:
        now = _now()
        request = PinRequest(
            id=str(uuid.uuid4()),
            owner=owner,
            cid=cid,
            duration_days=duration_days,
            created_at=now,
            updated_at=now,
        )
        async with self._write_lock:
            await self.db.execute(
                "INSERT INTO requests"
                " (id, owner, cid, duration_days, status, size_bytes, price,"
                "  created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, 0, '0', ?, ?)",
                (
                    request.id, owner, cid, duration_days,
                    RequestStatus.PENDING.value, now, now,
                ),
            )
            await self.db.commit()
        return request

    async def get_request(
        self, request_id: str, with_contracts: bool = True
    ) -> PinRequest | None:
        async with self.db.execute(
            "SELECT * FROM requests WHERE id=?", (request_id,)
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        request = _row_to_request(row)
        if with_contracts:
            request.contracts = await self.get_contracts_for_request(request_id)
        return request

    async def list_requests(
        self,
        owner: str,
        page: int = 1,
        limit: int = 20,
        status: RequestStatus | None = None,
    ) -> tuple[list[PinRequest], int]:
        where = "owner=?"
        params: list = [owner]
        if status is not None:
            where += " AND status=?"
            params.append(status.value)

        async with self.db.execute(
            f"SELECT COUNT(*) AS c FROM requests WHERE {where}", params
        ) as cur:
            row = await cur.fetchone()
            total = row["c"] if row else 0

        offset = (page - 1) * limit
        async with self.db.execute(
            f"SELECT * FROM requests WHERE {where}"
            " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ) as cur:
            items = [_row_to_request(row) async for row in cur]
        return items, total

    async def get_requests_by_cid(
        self, cid: str, owner: str | None = None
    ) -> list[PinRequest]:
        if owner is not None:
            sql = "SELECT * FROM requests WHERE cid=? AND owner=? ORDER BY created_at"
            params: tuple = (cid, owner)
        else:
            sql = "SELECT * FROM requests WHERE cid=? ORDER BY created_at"
            params = (cid,)
        async with self.db.execute(sql, params) as cur:
            return [_row_to_request(row) async for row in cur]

    async def get_pending_requests(self, limit: int = 100) -> list[PinRequest]:
        async with self.db.execute(
            "SELECT * FROM requests WHERE status=? ORDER BY created_at LIMIT ?",
            (RequestStatus.PENDING.value, limit),
        ) as cur:
            return [_row_to_request(row) async for row in cur]

    async def get_failed_before(self, cutoff: str) -> list[PinRequest]:
        async with self.db.execute(
            "SELECT * FROM requests"
            " WHERE status=? AND archived_at IS NULL AND updated_at < ?"
            " ORDER BY updated_at",
            (RequestStatus.FAILED.value, cutoff),
        ) as cur:
            return [_row_to_request(row) async for row in cur]

    async def commit_pinned(
        self,
        request_id: str,
        contract: Contract,
        size_bytes: int,
        price: Decimal,
    ) -> bool:
        now = _now()
        contract.created_at = contract.created_at or now
        contract.updated_at = now
        async with self._write_lock:
            cur = await self.db.execute(
                "UPDATE requests SET status=?, size_bytes=?, price=?, updated_at=?"
                " WHERE id=? AND status=?",
                (
                    RequestStatus.PINNED.value, size_bytes, str(price), now,
                    request_id, RequestStatus.PENDING.value,
                ),
            )
            if cur.rowcount == 0:
                await self.db.rollback()
                return False
            try:
                await self._insert_contract(contract)
            except BaseException:
                await self.db.rollback()
                raise
            await self.db.commit()
        return True

    async def mark_failed(self, request_id: str, reason: str) -> bool:
        return await self._finish_request(request_id, RequestStatus.FAILED, reason)

    async def cancel_request(self, request_id: str) -> bool:
        return await self._finish_request(request_id, RequestStatus.CANCELLED, None)

    async def _finish_request(
        self, request_id: str, target: RequestStatus, reason: str | None
    ) -> bool:
        RequestStatus.PENDING.transition(target)
        async with self._write_lock:
            cur = await self.db.execute(
                "UPDATE requests SET status=?, failure_reason=?, updated_at=?"
                " WHERE id=? AND status=?",
                (target.value, reason, _now(), request_id, RequestStatus.PENDING.value),
            )
            await self.db.commit()
        return cur.rowcount > 0

    async def archive_request(self, request_id: str) -> bool:
        async with self._write_lock:
            cur = await self.db.execute(
                "UPDATE requests SET archived_at=?"
                " WHERE id=? AND status=? AND archived_at IS NULL",
                (_now(), request_id, RequestStatus.FAILED.value),
            )
            await self.db.commit()
        return cur.rowcount > 0

    async def delete_request(self, request_id: str) -> bool:
        async with self._write_lock:
            cur = await self.db.execute(
                "DELETE FROM requests WHERE id=? AND status=?",
                (request_id, RequestStatus.FAILED.value),
            )
            if cur.rowcount == 0:
                await self.db.rollback()
                return False
            try:
                await self.db.execute("DELETE FROM contracts WHERE request_id=?", (request_id,))
            except BaseException:
                await self.db.rollback()
                raise
            await self.db.commit()
        return True

    # ── Contracts ──────────────────────────────────────────

    async def save_contract(self, contract: Contract) -> None:
        now = _now()
        contract.created_at = contract.created_at or now
        contract.updated_at = now
        async with self._write_lock:
            await self._insert_contract(contract)
            await self.db.commit()

    async def _insert_contract(self, contract: Contract) -> None:
        await self.db.execute(
            "INSERT INTO contracts"
            " (id, request_id, deal_handle, provider_id, start_epoch, end_epoch,"
            "  status, storage_price, retrieval_cost, parent_contract_id,"
            "  created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                contract.id, contract.request_id, contract.deal_handle,
                contract.provider_id, contract.start_epoch, contract.end_epoch,
                contract.status.value, str(contract.storage_price),
                str(contract.retrieval_cost), contract.parent_contract_id,
                contract.created_at, contract.updated_at,
            ),
        )

    async def get_contract(self, contract_id: str) -> Contract | None:
        async with self.db.execute(
            "SELECT * FROM contracts WHERE id=?", (contract_id,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_contract(row) if row else None

    async def get_contracts_for_request(self, request_id: str) -> list[Contract]:
        async with self.db.execute(
            "SELECT * FROM contracts WHERE request_id=? ORDER BY created_at, rowid",
            (request_id,),
        ) as cur:
            return [_row_to_contract(row) async for row in cur]

    async def get_contracts_by_status(
        self, statuses: list[ContractStatus] | tuple[ContractStatus, ...]
    ) -> list[Contract]:
        if not statuses:
            return []
        placeholders = ",".join("?" for _ in statuses)
        async with self.db.execute(
            f"SELECT * FROM contracts WHERE status IN ({placeholders})"
            " ORDER BY updated_at",
            [s.value for s in statuses],
        ) as cur:
            return [_row_to_contract(row) async for row in cur]

    async def get_expiring_contracts(
        self, current_epoch: int, threshold_epochs: int
    ) -> list[Contract]:
        placeholders = ",".join("?" for _ in _SUCCESSOR_COVERS)
        async with self.db.execute(
            "SELECT c.* FROM contracts c"
            " WHERE c.status=? AND c.end_epoch - ? <= ?"
            " AND NOT EXISTS ("
            "   SELECT 1 FROM contracts s"
            f"  WHERE s.parent_contract_id = c.id AND s.status IN ({placeholders})"
            " )"
            " ORDER BY c.end_epoch",
            [
                ContractStatus.ACTIVE.value, current_epoch, threshold_epochs,
                *_SUCCESSOR_COVERS,
            ],
        ) as cur:
            return [_row_to_contract(row) async for row in cur]

    async def has_successor(self, contract_id: str) -> bool:
        placeholders = ",".join("?" for _ in _SUCCESSOR_COVERS)
        async with self.db.execute(
            "SELECT 1 FROM contracts"
            f" WHERE parent_contract_id=? AND status IN ({placeholders})",
            [contract_id, *_SUCCESSOR_COVERS],
        ) as cur:
            return await cur.fetchone() is not None

    async def update_contract_status(
        self,
        contract_id: str,
        expected: ContractStatus,
        target: ContractStatus,
    ) -> bool:
        expected.transition(target)
        async with self._write_lock:
            cur = await self.db.execute(
                "UPDATE contracts SET status=?, updated_at=? WHERE id=? AND status=?",
                (target.value, _now(), contract_id, expected.value),
            )
            await self.db.commit()
        return cur.rowcount > 0

    # ── Stats ──────────────────────────────────────────────

    async def count_requests_by_status(self) -> dict[str, int]:
        async with self.db.execute(
            "SELECT status, COUNT(*) AS c FROM requests GROUP BY status"
        ) as cur:
            return {row["status"]: row["c"] async for row in cur}

    async def count_contracts_by_status(self) -> dict[str, int]:
        async with self.db.execute(
            "SELECT status, COUNT(*) AS c FROM contracts GROUP BY status"
        ) as cur:
            return {row["status"]: row["c"] async for row in cur}

    async def get_committed_totals(self) -> tuple[Decimal, int]:
        # Prices are TEXT so SUM() would go through floats
        total_price = Decimal("0")
        total_bytes = 0
        async with self.db.execute(
            "SELECT price, size_bytes FROM requests WHERE status=?",
            (RequestStatus.PINNED.value,),
        ) as cur:
            async for row in cur:
                total_price += Decimal(row["price"])
                total_bytes += row["size_bytes"]
        return total_price, total_bytes

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        request_id: str | None = None,
        job_id: str | None = None,
    ) -> None:
        async with self._write_lock:
            await self.db.execute(
                "INSERT INTO activity_log (event_type, request_id, job_id, message, created_at)"
                " VALUES (?, ?, ?, ?, ?)",
                (event_type, request_id, job_id, message, _now()),
            )
            await self.db.commit()

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        ) as cur:
            return [
                ActivityRecord(
                    id=row["id"],
                    event_type=row["event_type"],
                    request_id=row["request_id"],
                    job_id=row["job_id"],
                    message=row["message"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]


# ── Row converters ─────────────────────────────────────────


def _row_to_request(row: aiosqlite.Row) -> PinRequest:
    return PinRequest(
        id=row["id"],
        owner=row["owner"],
        cid=row["cid"],
        duration_days=row["duration_days"],
        status=RequestStatus(row["status"]),
        size_bytes=row["size_bytes"],
        price=Decimal(row["price"]),
        failure_reason=row["failure_reason"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        archived_at=row["archived_at"],
    )


def _row_to_contract(row: aiosqlite.Row) -> Contract:
    return Contract(
        id=row["id"],
        request_id=row["request_id"],
        deal_handle=row["deal_handle"],
        provider_id=row["provider_id"],
        start_epoch=row["start_epoch"],
        end_epoch=row["end_epoch"],
        status=ContractStatus(row["status"]),
        storage_price=Decimal(row["storage_price"]),
        retrieval_cost=Decimal(row["retrieval_cost"]),
        parent_contract_id=row["parent_contract_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
