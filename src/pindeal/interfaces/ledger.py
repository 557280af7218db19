"""Ledger protocol - storage deals on the Filecoin chain."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from pindeal.models.records import ProviderInfo


class Ledger(Protocol):
    """Negotiates and observes storage deals.

    Deal states are returned as the ledger's own names (``StorageDealActive``
    and friends); translating them into contract statuses is the caller's job.
    """

    async def start_deal(
        self,
        cid: str,
        provider_id: str,
        duration_epochs: int,
        price_per_epoch: Decimal,
    ) -> str:
        """Propose a deal and return its handle (the proposal CID)."""
        ...

    async def get_deal_status(self, deal_handle: str) -> str:
        ...

    async def get_current_epoch(self) -> int:
        ...

    async def get_available_providers(self) -> list[ProviderInfo]:
        ...

    async def get_wallet_balance(self, address: str) -> Decimal:
        ...
