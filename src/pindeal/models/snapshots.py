"""JSON-serializable snapshot models for the query surface."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any


def _to_dict(obj: Any) -> dict:
    """Convert a dataclass to a plain dict, rendering Decimals as strings."""
    data = asdict(obj)
    return {k: _plain(v) for k, v in data.items()}


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


@dataclass
class PriceQuote:
    size_bytes: int
    duration_days: int
    price: Decimal
    currency: str = "FIL"
    base_price_per_gb_per_month: Decimal = Decimal("0")
    markup_percentage: Decimal = Decimal("0")
    minimum_deal_size: int = 0

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class HealthReport:
    """Reachability of the store and both collaborators."""

    store_ok: bool
    storage_network_ok: bool
    ledger_ok: bool
    current_epoch: int | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.store_ok and self.storage_network_ok and self.ledger_ok

    def to_dict(self) -> dict:
        data = _to_dict(self)
        data["healthy"] = self.healthy
        return data


@dataclass
class ServiceStats:
    requests_by_status: dict[str, int] = field(default_factory=dict)
    contracts_by_status: dict[str, int] = field(default_factory=dict)
    total_committed_price: Decimal = Decimal("0")
    total_pinned_bytes: int = 0
    queue_depth: int = 0

    @property
    def total_requests(self) -> int:
        return sum(self.requests_by_status.values())

    def to_dict(self) -> dict:
        data = _to_dict(self)
        data["total_requests"] = self.total_requests
        return data
