"""Kubo IPFS client - content and pin operations via the Kubo HTTP RPC."""

from __future__ import annotations

import logging

import httpx

from pindeal.errors import (
    ContentUnavailableError,
    PermanentError,
    PinFailedError,
    TransientCollaboratorError,
)

log = logging.getLogger(__name__)

# Kubo reports every failure as HTTP 500 with a JSON "Message"; these
# fragments mean the request itself is bad and retrying cannot help.
_PERMANENT_MARKERS = (
    "invalid cid",
    "invalid path",
    "failed to decode",
    "selected encoding not supported",
    "not found",
    "no link named",
    "could not resolve",
    "is not a valid",
    "not pinned",
)


class KuboClient:
    """Implements the StorageNetwork protocol against a Kubo node.

    Uses the Kubo HTTP RPC API at /api/v0/ for:
    - add: Import raw bytes
    - pin/add, pin/rm: Pin management
    - object/stat: Existence and cumulative size
    - cat: Content retrieval
    - id: Liveness
    """

    def __init__(
        self,
        api_url: str = "http://localhost:5001",
        timeout: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = api_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url}/api/v0/{endpoint}"

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or self._timeout, connect=10),
            transport=self._transport,
        )

    async def _post(
        self,
        endpoint: str,
        params: dict | None = None,
        files: dict | None = None,
        timeout: float | None = None,
        permanent: type[PermanentError] = PermanentError,
    ) -> httpx.Response:
        """POST to an RPC endpoint and classify failures.

        Timeouts, connection errors and unrecognised 5xx responses raise
        TransientCollaboratorError; 4xx and known bad-input messages raise
        ``permanent``.
        """
        try:
            async with self._client(timeout) as client:
                resp = await client.post(self._url(endpoint), params=params, files=files)
        except httpx.TimeoutException as exc:
            raise TransientCollaboratorError(f"kubo {endpoint}: timeout") from exc
        except httpx.TransportError as exc:
            raise TransientCollaboratorError(f"kubo {endpoint}: {exc}") from exc

        if resp.status_code < 400:
            return resp

        message = _error_message(resp)
        if resp.status_code < 500 or _is_permanent(message):
            raise permanent(f"kubo {endpoint}: {message}")
        raise TransientCollaboratorError(
            f"kubo {endpoint}: HTTP {resp.status_code} {message}"
        )

    async def add(self, data: bytes) -> str:
        resp = await self._post(
            "add",
            params={"pin": "false", "cid-version": "0"},
            files={"file": ("data", data)},
        )
        cid = resp.json().get("Hash", "")
        log.info("Added %d bytes as %s", len(data), cid)
        return cid

    async def pin(self, cid: str) -> None:
        """Pin a CID recursively. Kubo treats re-pinning as a no-op."""
        log.info("Pinning %s", cid)
        await self._post("pin/add", params={"arg": cid}, permanent=PinFailedError)

    async def unpin(self, cid: str) -> None:
        try:
            await self._post("pin/rm", params={"arg": cid})
        except PermanentError as exc:
            if "not pinned" in str(exc).lower():
                log.debug("CID %s was not pinned", cid)
                return
            raise
        log.info("Unpinned %s", cid)

    async def exists(self, cid: str) -> bool:
        try:
            await self._post("object/stat", params={"arg": cid}, timeout=10)
        except PermanentError:
            return False
        except TransientCollaboratorError as exc:
            # A stat that times out means the content could not be found in time
            if isinstance(exc.__cause__, httpx.TimeoutException):
                return False
            raise
        return True

    async def get_size(self, cid: str) -> int:
        resp = await self._post(
            "object/stat", params={"arg": cid}, permanent=ContentUnavailableError,
        )
        size = resp.json().get("CumulativeSize")
        if size is None:
            raise ContentUnavailableError(f"kubo object/stat: no size for {cid}")
        return int(size)

    async def cat(self, cid: str) -> bytes:
        resp = await self._post("cat", params={"arg": cid}, permanent=ContentUnavailableError)
        return resp.content

    async def ping(self) -> bool:
        try:
            await self._post("id", timeout=5)
            return True
        except Exception as exc:
            log.warning("Kubo ping failed: %s", exc)
            return False


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(data, dict):
        return str(data.get("Message", ""))[:200]
    return resp.text[:200]


def _is_permanent(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _PERMANENT_MARKERS)
