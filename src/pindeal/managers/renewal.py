"""Renewal manager - negotiates successors for contracts nearing expiry."""

from __future__ import annotations

import asyncio
import logging
import uuid

from pindeal.errors import PermanentError, TransientCollaboratorError
from pindeal.interfaces.ledger import Ledger
from pindeal.interfaces.store import StateStore
from pindeal.models.records import Contract, PinRequest, RenewalReport
from pindeal.models.states import ContractStatus
from pindeal.pipeline.negotiation import DealNegotiator
from pindeal.services.pricing import PricingCalculator

log = logging.getLogger(__name__)


class RenewalManager:
    """Keeps pinned content under contract past each deal's end epoch.

    A successor is a new ``pending`` contract on the same request whose
    ``parent_contract_id`` names the expiring one. The expiring contract
    itself is never modified. Passes are serialized within the process.
    """

    def __init__(
        self,
        store: StateStore,
        ledger: Ledger,
        negotiator: DealNegotiator,
        pricing: PricingCalculator,
        threshold_epochs: int,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._negotiator = negotiator
        self._pricing = pricing
        self._threshold_epochs = threshold_epochs
        self._lock = asyncio.Lock()

    async def run_pass(self) -> RenewalReport:
        async with self._lock:
            current_epoch = await self._ledger.get_current_epoch()
            candidates = await self._store.get_expiring_contracts(
                current_epoch, self._threshold_epochs,
            )
            report = RenewalReport(current_epoch=current_epoch, candidates=len(candidates))
            for contract in candidates:
                await self._renew(contract, current_epoch, report)

        log.info(
            "Renewal pass complete at epoch %d: %d candidates, %d renewed, %d failed, %d errors",
            current_epoch, report.candidates, report.renewed, report.failed, report.errors,
        )
        return report

    async def renew_request(self, request: PinRequest, force: bool = True) -> list[Contract]:
        """Renew the active contracts of one request.

        With ``force`` the expiry threshold is ignored. Contracts that
        already have a successor are left alone.
        """
        async with self._lock:
            current_epoch = await self._ledger.get_current_epoch()
            report = RenewalReport(current_epoch=current_epoch)
            for contract in await self._store.get_contracts_for_request(request.id):
                if contract.status != ContractStatus.ACTIVE:
                    continue
                if not force and not contract.needs_renewal(current_epoch, self._threshold_epochs):
                    continue
                report.candidates += 1
                await self._renew(contract, current_epoch, report, request=request)
        return report.successors

    async def _renew(
        self,
        contract: Contract,
        current_epoch: int,
        report: RenewalReport,
        request: PinRequest | None = None,
    ) -> None:
        if await self._store.has_successor(contract.id):
            return

        request = request or await self._store.get_request(contract.request_id, with_contracts=False)
        if request is None:
            log.warning("Contract %s has no request %s", contract.id, contract.request_id)
            report.errors += 1
            return

        price = self._pricing.calculate_price(request.size_bytes, request.duration_days)
        try:
            successor = await self._negotiator.negotiate(
                request.id, request.cid, request.duration_days, price,
                parent_contract_id=contract.id,
            )
        except TransientCollaboratorError as exc:
            log.warning("Renewal of contract %s deferred: %s", contract.id, exc)
            report.errors += 1
            return
        except PermanentError as exc:
            log.error("Renewal of contract %s failed: %s", contract.id, exc)
            epochs = request.duration_days * self._negotiator.epochs_per_day
            await self._store.save_contract(Contract(
                id=str(uuid.uuid4()),
                request_id=request.id,
                deal_handle="",
                provider_id="",
                start_epoch=current_epoch,
                end_epoch=current_epoch + epochs,
                status=ContractStatus.FAILED,
                storage_price=price,
                parent_contract_id=contract.id,
            ))
            await self._store.log_activity(
                "renewal_failed",
                f"Renewal of contract {contract.id} failed: {exc}",
                request_id=request.id,
            )
            report.failed += 1
            return

        await self._store.save_contract(successor)
        await self._store.log_activity(
            "contract_renewed",
            f"Contract {contract.id} succeeded by {successor.id} (deal {successor.deal_handle})",
            request_id=request.id,
        )
        log.info(
            "Renewed contract %s -> %s with %s ending at epoch %d",
            contract.id, successor.id, successor.provider_id, successor.end_epoch,
        )
        report.renewed += 1
        report.successors.append(successor)
