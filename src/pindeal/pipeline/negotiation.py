"""Provider ranking and deal negotiation."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from pindeal.errors import NegotiationError, TransientCollaboratorError
from pindeal.interfaces.ledger import Ledger
from pindeal.models.config import EPOCHS_PER_DAY
from pindeal.models.records import Contract, ProviderInfo
from pindeal.models.states import ContractStatus

log = logging.getLogger(__name__)

POWER_WEIGHT = 0.5
REPUTATION_WEIGHT = 0.3
PRICE_WEIGHT = 0.2


def rank_providers(providers: list[ProviderInfo]) -> list[ProviderInfo]:
    """Order available providers best first.

    Score is a weighted sum of power relative to the strongest provider,
    reputation, and price relative to the cheapest. Ties break on id so
    the order is stable.
    """
    available = [p for p in providers if p.available]
    if not available:
        return []

    max_power = max(p.power for p in available)
    priced = [p.price for p in available if p.price > 0]
    min_price = min(priced) if priced else Decimal(0)

    def score(p: ProviderInfo) -> float:
        power_score = p.power / max_power if max_power > 0 else 0.0
        price_score = float(min_price / p.price) if p.price > 0 else 1.0
        return (
            POWER_WEIGHT * power_score
            + REPUTATION_WEIGHT * p.reputation
            + PRICE_WEIGHT * price_score
        )

    return sorted(available, key=lambda p: (-score(p), p.id))


class DealNegotiator:
    """Picks a provider and starts a storage deal with it.

    Shared by the pin processor (initial contracts) and the renewal
    manager (successors). Returns an unsaved ``pending`` Contract.
    """

    def __init__(
        self,
        ledger: Ledger,
        epochs_per_day: int = EPOCHS_PER_DAY,
        max_candidates: int = 3,
    ) -> None:
        self._ledger = ledger
        self._epochs_per_day = epochs_per_day
        self._max_candidates = max_candidates

    @property
    def epochs_per_day(self) -> int:
        return self._epochs_per_day

    async def ranked_providers(self) -> list[ProviderInfo]:
        return rank_providers(await self._ledger.get_available_providers())

    async def negotiate(
        self,
        request_id: str,
        cid: str,
        duration_days: int,
        price: Decimal,
        parent_contract_id: str | None = None,
    ) -> Contract:
        """Start a deal for ``cid`` and describe it as a pending contract.

        Providers are tried best first; a rejection moves on to the next
        candidate. Raises TransientCollaboratorError when no provider is
        available and NegotiationError when every candidate rejected.
        """
        candidates = (await self.ranked_providers())[: self._max_candidates]
        if not candidates:
            raise TransientCollaboratorError("no storage providers available")

        epochs = duration_days * self._epochs_per_day
        price_per_epoch = price / epochs

        # Read the epoch before proposing so a started deal is never left
        # unrecorded by a failing follow-up call.
        start_epoch = await self._ledger.get_current_epoch()

        last_error: NegotiationError | None = None
        for provider in candidates:
            try:
                handle = await self._ledger.start_deal(cid, provider.id, epochs, price_per_epoch)
            except NegotiationError as exc:
                log.warning("Provider %s rejected deal for %s: %s", provider.id, cid, exc)
                last_error = exc
                continue

            return Contract(
                id=str(uuid.uuid4()),
                request_id=request_id,
                deal_handle=handle,
                provider_id=provider.id,
                start_epoch=start_epoch,
                end_epoch=start_epoch + epochs,
                status=ContractStatus.PENDING,
                storage_price=price,
                parent_contract_id=parent_contract_id,
            )

        assert last_error is not None
        raise last_error
