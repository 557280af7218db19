"""Deal monitor - reconciles live contracts against the ledger."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from pindeal.interfaces.ledger import Ledger
from pindeal.interfaces.store import StateStore
from pindeal.lotus.dealstates import contract_status_for
from pindeal.models.records import Contract, MonitorReport
from pindeal.models.states import InvalidTransitionError, LIVE_CONTRACT_STATUSES

log = logging.getLogger(__name__)


class DealMonitor:
    """Runs one reconciliation pass over every live contract.

    Each pass:
    1. Loads contracts that are pending, published or active
    2. Asks the ledger for each deal's state (with a concurrency limit)
    3. Writes the mapped status when it changed and the move is legal
    4. Counts failures per contract without stopping the pass
    """

    def __init__(self, store: StateStore, ledger: Ledger, max_concurrent: int = 5) -> None:
        self._store = store
        self._ledger = ledger
        self._max_concurrent = max_concurrent

    async def run_pass(self) -> MonitorReport:
        started = datetime.now(timezone.utc).isoformat()
        start_time = time.monotonic()

        contracts = await self._store.get_contracts_by_status(LIVE_CONTRACT_STATUSES)

        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def _check_one(contract: Contract) -> str:
            async with semaphore:
                return await self._reconcile(contract)

        results = await asyncio.gather(
            *(_check_one(c) for c in contracts), return_exceptions=True,
        )

        report = MonitorReport(started_at=started, total_checked=len(contracts))
        for contract, result in zip(contracts, results):
            if isinstance(result, Exception):
                log.error(
                    "Status check failed for contract %s (deal %s): %s",
                    contract.id, contract.deal_handle, result,
                )
                report.errors += 1
            elif result == "updated":
                report.updated += 1
            elif result == "unchanged":
                report.unchanged += 1
            else:
                report.skipped += 1

        report.duration_ms = int((time.monotonic() - start_time) * 1000)
        report.completed_at = datetime.now(timezone.utc).isoformat()
        log.info(
            "Monitor pass complete: %d checked, %d updated, %d errors in %dms",
            report.total_checked, report.updated, report.errors, report.duration_ms,
        )
        return report

    async def _reconcile(self, contract: Contract) -> str:
        if not contract.deal_handle:
            return "skipped"

        state = await self._ledger.get_deal_status(contract.deal_handle)
        target = contract_status_for(state)
        if target == contract.status:
            return "unchanged"

        try:
            contract.status.transition(target)
        except InvalidTransitionError as exc:
            log.warning("Contract %s: ledger reports %s; %s", contract.id, state, exc)
            return "skipped"

        if not await self._store.update_contract_status(contract.id, contract.status, target):
            log.debug("Contract %s changed concurrently, leaving it", contract.id)
            return "skipped"

        log.info(
            "Contract %s: %s -> %s (ledger %s)",
            contract.id, contract.status.value, target.value, state,
        )
        await self._store.log_activity(
            "contract_status",
            f"Contract {contract.id} {contract.status.value} -> {target.value}",
            request_id=contract.request_id,
        )
        return "updated"
