"""Lotus client - storage deals and chain queries via the Lotus JSON-RPC API."""

from __future__ import annotations

import asyncio
import itertools
import logging
from decimal import Decimal

import httpx

from pindeal.errors import NegotiationError, PermanentError, TransientCollaboratorError
from pindeal.lotus.dealstates import state_name
from pindeal.models.records import ProviderInfo

log = logging.getLogger(__name__)

ATTO_PER_FIL = Decimal(10) ** 18

# JSON-RPC error messages that mean the node, not the request, is at fault
_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection refused",
    "temporarily unavailable",
    "context deadline exceeded",
    "too many requests",
)


class LotusClient:
    """Implements the Ledger protocol against a Lotus full node.

    The API token is injected at construction and sent as a bearer
    token on every call.
    """

    def __init__(
        self,
        api_url: str = "http://localhost:1234/rpc/v0",
        token: str = "",
        wallet: str = "",
        timeout: int = 30,
        verified_deal: bool = False,
        default_ask_price: Decimal = Decimal("0.001"),
        max_providers: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url
        self._token = token
        self._wallet = wallet
        self._timeout = timeout
        self._verified_deal = verified_deal
        self._default_ask_price = default_ask_price
        self._max_providers = max_providers
        self._transport = transport
        self._ids = itertools.count(1)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _call(
        self,
        method: str,
        params: list,
        permanent: type[PermanentError] = PermanentError,
    ):
        """Invoke ``Filecoin.<method>`` and return its result.

        Transport failures, 5xx responses and JSON-RPC errors that look
        like node trouble raise TransientCollaboratorError; everything else
        raises ``permanent``.
        """
        body = {
            "jsonrpc": "2.0",
            "method": f"Filecoin.{method}",
            "params": params,
            "id": next(self._ids),
        }
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10),
                transport=self._transport,
            ) as client:
                resp = await client.post(self._api_url, json=body, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise TransientCollaboratorError(f"lotus {method}: timeout") from exc
        except httpx.TransportError as exc:
            raise TransientCollaboratorError(f"lotus {method}: {exc}") from exc

        if resp.status_code >= 500:
            raise TransientCollaboratorError(f"lotus {method}: HTTP {resp.status_code}")
        if resp.status_code in (401, 403):
            raise PermanentError(f"lotus {method}: unauthorized")
        if resp.status_code >= 400:
            raise permanent(f"lotus {method}: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise TransientCollaboratorError(f"lotus {method}: malformed response") from exc

        if error := data.get("error"):
            message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
            if any(marker in message.lower() for marker in _TRANSIENT_MARKERS):
                raise TransientCollaboratorError(f"lotus {method}: {message}")
            raise permanent(f"lotus {method}: {message}")
        return data.get("result")

    # ── Deals ──────────────────────────────────────────────

    async def start_deal(
        self,
        cid: str,
        provider_id: str,
        duration_epochs: int,
        price_per_epoch: Decimal,
    ) -> str:
        atto = int((price_per_epoch * ATTO_PER_FIL).to_integral_value())
        params = {
            "Data": {"TransferType": "graphsync", "Root": {"/": cid}},
            "Wallet": self._wallet,
            "Miner": provider_id,
            "EpochPrice": str(atto),
            "MinBlocksDuration": duration_epochs,
            "DealStartEpoch": -1,
            "FastRetrieval": True,
            "VerifiedDeal": self._verified_deal,
        }
        result = await self._call("ClientStartDeal", [params], permanent=NegotiationError)
        handle = result.get("/") if isinstance(result, dict) else None
        if not handle:
            raise NegotiationError(f"lotus ClientStartDeal: no proposal cid for {cid}")
        log.info(
            "Started deal %s with %s for %s (%d epochs, %s attoFIL/epoch)",
            handle, provider_id, cid, duration_epochs, atto,
        )
        return handle

    async def get_deal_status(self, deal_handle: str) -> str:
        info = await self._call("ClientGetDealInfo", [{"/": deal_handle}])
        if not isinstance(info, dict):
            raise PermanentError(f"lotus ClientGetDealInfo: no info for {deal_handle}")
        return state_name(int(info.get("State", 0)))

    # ── Chain ──────────────────────────────────────────────

    async def get_current_epoch(self) -> int:
        head = await self._call("ChainHead", [])
        return int(head["Height"])

    async def get_available_providers(self) -> list[ProviderInfo]:
        """List miners with their power.

        Miners whose info or power cannot be fetched are skipped. Ask
        prices and reputation are not on chain; the configured default
        ask and a neutral reputation are used.
        """
        miners = await self._call("StateListMiners", [None]) or []
        miners = miners[: self._max_providers]

        semaphore = asyncio.Semaphore(5)

        async def _describe(miner: str) -> ProviderInfo | None:
            async with semaphore:
                try:
                    info = await self._call("StateMinerInfo", [miner, None])
                    power = await self._call("StateMinerPower", [miner, None])
                except (PermanentError, TransientCollaboratorError) as exc:
                    log.debug("Skipping miner %s: %s", miner, exc)
                    return None
            qa_power = int((power or {}).get("MinerPower", {}).get("QualityAdjPower", 0))
            has_peer = bool((info or {}).get("PeerId"))
            return ProviderInfo(
                id=miner,
                power=qa_power,
                available=has_peer and qa_power > 0,
                price=self._default_ask_price,
                reputation=1.0,
            )

        results = await asyncio.gather(*(_describe(m) for m in miners))
        return [p for p in results if p is not None]

    async def get_wallet_balance(self, address: str) -> Decimal:
        balance = await self._call("WalletBalance", [address])
        return Decimal(str(balance or "0")) / ATTO_PER_FIL

    async def ping(self) -> bool:
        try:
            await self.get_current_epoch()
            return True
        except Exception as exc:
            log.warning("Lotus ping failed: %s", exc)
            return False
