"""Pin processor - drives one pin request from pending to pinned or failed."""

from __future__ import annotations

import logging
from enum import Enum

from pindeal.errors import PermanentError, PindealError
from pindeal.interfaces.storage_network import StorageNetwork
from pindeal.interfaces.store import StateStore
from pindeal.models.records import PinRequest
from pindeal.models.states import RequestStatus
from pindeal.pipeline.negotiation import DealNegotiator
from pindeal.services.pricing import PricingCalculator

log = logging.getLogger(__name__)

CONTENT_UNAVAILABLE = "content_unavailable"
PIN_FAILED = "pin_failed"
DEAL_NEGOTIATION_FAILED = "deal_negotiation_failed"


class ProcessOutcome(str, Enum):
    PINNED = "pinned"
    FAILED = "failed"
    SKIPPED = "skipped"  # request no longer pending
    CONFLICT = "conflict"  # lost the final write to a competing one


class PinProcessor:
    """Converts a pending request into a pinned request with a contract.

    Pipeline:
    1. Reload the request; anything but pending is a no-op
    2. Resolve the content size on the storage network
    3. Price it
    4. Pin it (idempotent)
    5-6. Negotiate a deal with the best provider
    7. Commit contract + pinned status in one conditional write

    Transient collaborator errors propagate so the job is redelivered.
    Permanent ones fail the request with a stable reason.
    """

    def __init__(
        self,
        store: StateStore,
        network: StorageNetwork,
        negotiator: DealNegotiator,
        pricing: PricingCalculator,
        unpin_on_failure: bool = False,
    ) -> None:
        self._store = store
        self._network = network
        self._negotiator = negotiator
        self._pricing = pricing
        self._unpin_on_failure = unpin_on_failure

    async def process(self, request_id: str, job_id: str | None = None) -> ProcessOutcome:
        request = await self._store.get_request(request_id, with_contracts=False)
        if request is None:
            log.warning("Request %s not found (job %s), skipping", request_id, job_id)
            return ProcessOutcome.SKIPPED
        if request.status != RequestStatus.PENDING:
            log.info(
                "Request %s already %s (job %s), skipping",
                request_id, request.status.value, job_id,
            )
            return ProcessOutcome.SKIPPED

        log.info("Processing request %s: cid=%s days=%d", request.id, request.cid, request.duration_days)

        try:
            size = await self._network.get_size(request.cid)
        except PermanentError as exc:
            return await self._fail(request, job_id, CONTENT_UNAVAILABLE, exc, pinned=False)

        price = self._pricing.calculate_price(size, request.duration_days)

        try:
            await self._network.pin(request.cid)
        except PermanentError as exc:
            return await self._fail(request, job_id, PIN_FAILED, exc, pinned=False)

        try:
            contract = await self._negotiator.negotiate(
                request.id, request.cid, request.duration_days, price,
            )
        except PermanentError as exc:
            return await self._fail(request, job_id, DEAL_NEGOTIATION_FAILED, exc, pinned=True)

        committed = await self._store.commit_pinned(request.id, contract, size, price)
        if not committed:
            log.warning(
                "Request %s changed state before commit (job %s); deal %s with %s not recorded",
                request.id, job_id, contract.deal_handle, contract.provider_id,
            )
            await self._store.log_activity(
                "commit_conflict",
                f"Deal {contract.deal_handle} not recorded: request no longer pending",
                request_id=request.id,
                job_id=job_id,
            )
            return ProcessOutcome.CONFLICT

        log.info(
            "Request %s pinned: %d bytes, %s FIL, deal %s with %s",
            request.id, size, price, contract.deal_handle, contract.provider_id,
        )
        await self._store.log_activity(
            "request_pinned",
            f"Pinned {request.cid} ({size} bytes, {price} FIL), deal {contract.deal_handle}",
            request_id=request.id,
            job_id=job_id,
        )
        return ProcessOutcome.PINNED

    async def fail_exhausted(
        self, request_id: str, job_id: str | None, reason: str, message: str = ""
    ) -> ProcessOutcome:
        """Fail a request whose job ran out of delivery attempts."""
        request = await self._store.get_request(request_id, with_contracts=False)
        if request is None or request.status != RequestStatus.PENDING:
            return ProcessOutcome.SKIPPED
        return await self._fail(request, job_id, reason, message or reason, pinned=False)

    async def _fail(
        self,
        request: PinRequest,
        job_id: str | None,
        reason: str,
        cause: Exception | str,
        pinned: bool,
    ) -> ProcessOutcome:
        log.error(
            "Request %s failed (job %s): %s: %s", request.id, job_id, reason, cause,
        )
        if not await self._store.mark_failed(request.id, reason):
            log.info("Request %s left pending before it could be failed", request.id)
            return ProcessOutcome.CONFLICT

        await self._store.log_activity(
            "request_failed", f"{reason}: {cause}", request_id=request.id, job_id=job_id,
        )

        if pinned and self._unpin_on_failure and not await self._cid_in_use(request):
            try:
                await self._network.unpin(request.cid)
            except PindealError as exc:
                log.warning("Unpin of %s after failure did not complete: %s", request.cid, exc)
        return ProcessOutcome.FAILED

    async def _cid_in_use(self, request: PinRequest) -> bool:
        """True if another live request still needs the same content pinned."""
        others = await self._store.get_requests_by_cid(request.cid)
        return any(
            r.id != request.id and r.status in (RequestStatus.PENDING, RequestStatus.PINNED)
            for r in others
        )
