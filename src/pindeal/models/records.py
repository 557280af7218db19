"""Persisted record types and operation results."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from pindeal.models.states import ContractStatus, RequestStatus


@dataclass
class Contract:
    """A storage deal negotiated with a provider on behalf of a request."""

    id: str
    request_id: str
    deal_handle: str  # ledger proposal CID, empty if negotiation never started
    provider_id: str
    start_epoch: int
    end_epoch: int
    status: ContractStatus = ContractStatus.PENDING
    storage_price: Decimal = Decimal("0")  # FIL
    retrieval_cost: Decimal = Decimal("0")  # FIL
    parent_contract_id: str | None = None  # set on renewal successors
    created_at: str = ""
    updated_at: str = ""

    def needs_renewal(self, current_epoch: int, threshold_epochs: int) -> bool:
        return (
            self.status == ContractStatus.ACTIVE
            and self.end_epoch - current_epoch <= threshold_epochs
        )


@dataclass
class PinRequest:
    """A user's request to keep a CID stored for a number of days."""

    id: str
    owner: str
    cid: str
    duration_days: int
    status: RequestStatus = RequestStatus.PENDING
    size_bytes: int = 0
    price: Decimal = Decimal("0")  # FIL
    failure_reason: str | None = None
    created_at: str = ""
    updated_at: str = ""
    archived_at: str | None = None
    contracts: list[Contract] = field(default_factory=list)

    @property
    def can_be_cancelled(self) -> bool:
        return self.status == RequestStatus.PENDING


@dataclass(frozen=True)
class ProviderInfo:
    """A storage provider as advertised by the ledger."""

    id: str
    power: int  # quality-adjusted power, bytes
    available: bool
    price: Decimal  # asking price per GiB per epoch, FIL
    reputation: float  # 0.0 - 1.0


@dataclass
class ActivityRecord:
    """A single activity log entry."""

    id: int
    event_type: str
    request_id: str | None
    job_id: str | None
    message: str
    created_at: str


@dataclass
class MonitorReport:
    """Summary of one deal monitor pass."""

    started_at: str
    completed_at: str = ""
    total_checked: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    duration_ms: int = 0


@dataclass
class RenewalReport:
    """Summary of one renewal pass."""

    current_epoch: int
    candidates: int = 0
    renewed: int = 0
    failed: int = 0
    errors: int = 0
    successors: list[Contract] = field(default_factory=list)


@dataclass
class CleanupReport:
    """Summary of one cleanup pass."""

    cutoff: str
    action: str
    matched: int = 0
    archived: int = 0
    deleted: int = 0
