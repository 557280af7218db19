"""Submission gateway - the synchronous surface over the pin-to-deal pipeline."""

from __future__ import annotations

import logging
import re

from pindeal.errors import (
    InvalidStateError,
    NotFoundError,
    PindealError,
    RateLimitedError,
    ValidationError,
)
from pindeal.interfaces.ledger import Ledger
from pindeal.interfaces.queue import JobQueue
from pindeal.interfaces.storage_network import StorageNetwork
from pindeal.interfaces.store import StateStore
from pindeal.managers.renewal import RenewalManager
from pindeal.models.jobs import ProcessPinJob
from pindeal.models.records import Contract, PinRequest, ProviderInfo
from pindeal.models.snapshots import HealthReport, PriceQuote, ServiceStats
from pindeal.models.states import RequestStatus
from pindeal.pipeline.negotiation import DealNegotiator
from pindeal.services.pricing import PricingCalculator
from pindeal.services.ratelimit import RedisRateLimiter

log = logging.getLogger(__name__)

MIN_DURATION_DAYS = 1
MAX_DURATION_DAYS = 1095  # 3 years
MAX_PAGE_SIZE = 100

_CID_V0 = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CID_V1 = re.compile(r"^baf[yk][a-z2-7]{40,}$")


def validate_cid(cid: str) -> None:
    if not cid or not (_CID_V0.match(cid) or _CID_V1.match(cid)):
        raise ValidationError(f"invalid content identifier: {cid!r}")


def validate_duration(duration_days: int) -> None:
    if not MIN_DURATION_DAYS <= duration_days <= MAX_DURATION_DAYS:
        raise ValidationError(
            f"duration_days must be between {MIN_DURATION_DAYS} and {MAX_DURATION_DAYS}"
        )


class SubmissionGateway:
    """Accepts pin requests and answers queries about them.

    Submission only persists the request and enqueues its processing job;
    all collaborator work happens in the pipeline.
    """

    def __init__(
        self,
        store: StateStore,
        queue: JobQueue,
        pricing: PricingCalculator,
        negotiator: DealNegotiator,
        renewal: RenewalManager,
        network: StorageNetwork,
        ledger: Ledger,
        rate_limiter: RedisRateLimiter | None = None,
    ) -> None:
        self._store = store
        self._queue = queue
        self._pricing = pricing
        self._negotiator = negotiator
        self._renewal = renewal
        self._network = network
        self._ledger = ledger
        self._rate_limiter = rate_limiter

    # ── Requests ───────────────────────────────────────────

    async def submit(
        self,
        owner: str,
        cid: str,
        duration_days: int,
        client_id: str | None = None,
    ) -> str:
        if self._rate_limiter is not None:
            if not await self._rate_limiter.allow(client_id or owner):
                raise RateLimitedError(retry_after=self._rate_limiter.window_seconds)

        if not owner:
            raise ValidationError("owner is required")
        validate_cid(cid)
        validate_duration(duration_days)

        request = await self._store.create_request(owner, cid, duration_days)
        job_id = await self._queue.enqueue(ProcessPinJob(request_id=request.id))
        await self._store.log_activity(
            "request_submitted",
            f"Pin request for {cid} ({duration_days} days)",
            request_id=request.id,
            job_id=job_id,
        )
        log.info("Request %s submitted by %s: cid=%s job=%s", request.id, owner, cid, job_id)
        return request.id

    async def get(self, request_id: str, owner: str) -> PinRequest:
        request = await self._store.get_request(request_id)
        if request is None or request.owner != owner:
            raise NotFoundError(f"request {request_id} not found")
        return request

    async def list_requests(
        self,
        owner: str,
        page: int = 1,
        limit: int = 20,
        status: RequestStatus | str | None = None,
    ) -> tuple[list[PinRequest], int]:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if status is not None and not isinstance(status, RequestStatus):
            try:
                status = RequestStatus(status)
            except ValueError:
                raise ValidationError(f"unknown status: {status!r}") from None
        return await self._store.list_requests(owner, page, limit, status)

    async def cancel(self, request_id: str, owner: str) -> PinRequest:
        request = await self.get(request_id, owner)
        if not request.can_be_cancelled:
            raise InvalidStateError(
                f"request {request_id} is {request.status.value} and cannot be cancelled"
            )
        if not await self._store.cancel_request(request_id):
            # The pipeline committed between our read and the write
            raise InvalidStateError(f"request {request_id} is no longer pending")

        await self._store.log_activity("request_cancelled", "Cancelled by owner", request_id=request_id)
        log.info("Request %s cancelled by %s", request_id, owner)
        return await self.get(request_id, owner)

    # ── Contracts ──────────────────────────────────────────

    async def contracts_for_content(self, cid: str, owner: str) -> list[Contract]:
        validate_cid(cid)
        contracts: list[Contract] = []
        for request in await self._store.get_requests_by_cid(cid, owner):
            contracts.extend(await self._store.get_contracts_for_request(request.id))
        return contracts

    async def renew_for_content(self, cid: str, owner: str) -> list[Contract]:
        validate_cid(cid)
        requests = [
            r for r in await self._store.get_requests_by_cid(cid, owner)
            if r.status == RequestStatus.PINNED
        ]
        if not requests:
            raise NotFoundError(f"no pinned request for {cid}")

        successors: list[Contract] = []
        for request in requests:
            successors.extend(await self._renewal.renew_request(request, force=True))
        return successors

    # ── Queries ────────────────────────────────────────────

    def quote(self, size_bytes: int, duration_days: int) -> PriceQuote:
        if size_bytes < 0:
            raise ValidationError("size_bytes must be >= 0")
        validate_duration(duration_days)
        return self._pricing.quote(size_bytes, duration_days)

    async def providers(self) -> list[ProviderInfo]:
        return await self._negotiator.ranked_providers()

    async def health(self) -> HealthReport:
        report = HealthReport(store_ok=False, storage_network_ok=False, ledger_ok=False)
        try:
            report.store_ok = await self._store.ping()
        except Exception as exc:
            report.errors["store"] = str(exc)
        report.storage_network_ok = await self._network.ping()
        if not report.storage_network_ok:
            report.errors["storage_network"] = "unreachable"
        try:
            report.current_epoch = await self._ledger.get_current_epoch()
            report.ledger_ok = True
        except PindealError as exc:
            report.errors["ledger"] = exc.code
        return report

    async def stats(self) -> ServiceStats:
        total_price, total_bytes = await self._store.get_committed_totals()
        return ServiceStats(
            requests_by_status=await self._store.count_requests_by_status(),
            contracts_by_status=await self._store.count_contracts_by_status(),
            total_committed_price=total_price,
            total_pinned_bytes=total_bytes,
            queue_depth=await self._queue.depth(),
        )
