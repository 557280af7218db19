"""StateStore protocol - persists requests, contracts and the activity log."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from pindeal.models.records import ActivityRecord, Contract, PinRequest
from pindeal.models.states import ContractStatus, RequestStatus


class StateStore(Protocol):
    """Persists pin requests and their storage contracts.

    Status-changing writes are conditional on the current status and
    return False when the row had already moved on.
    """

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        ...

    async def ping(self) -> bool:
        ...

    # ── Requests ───────────────────────────────────────────

    async def create_request(self, owner: str, cid: str, duration_days: int) -> PinRequest:
        ...

    async def get_request(
        self, request_id: str, with_contracts: bool = True
    ) -> PinRequest | None:
        ...

    async def list_requests(
        self,
        owner: str,
        page: int = 1,
        limit: int = 20,
        status: RequestStatus | None = None,
    ) -> tuple[list[PinRequest], int]:
        ...

    async def get_requests_by_cid(
        self, cid: str, owner: str | None = None
    ) -> list[PinRequest]:
        ...

    async def get_pending_requests(self, limit: int = 100) -> list[PinRequest]:
        ...

    async def get_failed_before(self, cutoff: str) -> list[PinRequest]:
        """Failed, not yet archived requests last updated before ``cutoff``."""
        ...

    async def commit_pinned(
        self,
        request_id: str,
        contract: Contract,
        size_bytes: int,
        price: Decimal,
    ) -> bool:
        """Insert the contract and move the request to pinned, atomically."""
        ...

    async def mark_failed(self, request_id: str, reason: str) -> bool:
        ...

    async def cancel_request(self, request_id: str) -> bool:
        ...

    async def archive_request(self, request_id: str) -> bool:
        ...

    async def delete_request(self, request_id: str) -> bool:
        ...

    # ── Contracts ──────────────────────────────────────────

    async def save_contract(self, contract: Contract) -> None:
        ...

    async def get_contract(self, contract_id: str) -> Contract | None:
        ...

    async def get_contracts_for_request(self, request_id: str) -> list[Contract]:
        ...

    async def get_contracts_by_status(
        self, statuses: list[ContractStatus] | tuple[ContractStatus, ...]
    ) -> list[Contract]:
        ...

    async def get_expiring_contracts(
        self, current_epoch: int, threshold_epochs: int
    ) -> list[Contract]:
        """Active contracts within the threshold and without a successor."""
        ...

    async def has_successor(self, contract_id: str) -> bool:
        ...

    async def update_contract_status(
        self,
        contract_id: str,
        expected: ContractStatus,
        target: ContractStatus,
    ) -> bool:
        ...

    # ── Stats ──────────────────────────────────────────────

    async def count_requests_by_status(self) -> dict[str, int]:
        ...

    async def count_contracts_by_status(self) -> dict[str, int]:
        ...

    async def get_committed_totals(self) -> tuple[Decimal, int]:
        """Sum of price and size over pinned requests."""
        ...

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        request_id: str | None = None,
        job_id: str | None = None,
    ) -> None:
        ...

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        ...
