"""StorageNetwork protocol - content addressing and pinning on IPFS."""

from __future__ import annotations

from typing import Protocol


class StorageNetwork(Protocol):
    """Retains content on a content-addressed storage network.

    Implementations raise ``TransientCollaboratorError`` when the node is
    unreachable and a ``PermanentError`` subclass when retrying cannot help.
    """

    async def add(self, data: bytes) -> str:
        """Add raw bytes and return their content identifier."""
        ...

    async def pin(self, cid: str) -> None:
        """Pin a CID. Pinning an already pinned CID succeeds."""
        ...

    async def unpin(self, cid: str) -> None:
        ...

    async def exists(self, cid: str) -> bool:
        ...

    async def get_size(self, cid: str) -> int:
        """Cumulative size of the DAG rooted at ``cid``, in bytes."""
        ...

    async def cat(self, cid: str) -> bytes:
        ...

    async def ping(self) -> bool:
        ...
