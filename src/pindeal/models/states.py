"""Request and contract status enums with their transition tables."""

from __future__ import annotations

from enum import Enum


class InvalidTransitionError(ValueError):
    """Raised when a status change is not in the transition table."""


class RequestStatus(str, Enum):
    """Lifecycle of a pin request."""

    PENDING = "pending"
    PINNED = "pinned"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not REQUEST_TRANSITIONS[self]

    def transition(self, target: RequestStatus) -> RequestStatus:
        if target not in REQUEST_TRANSITIONS[self]:
            raise InvalidTransitionError(
                f"Invalid request transition {self.value} -> {target.value}"
            )
        return target


class ContractStatus(str, Enum):
    """Lifecycle of a storage deal as seen by the service."""

    PENDING = "pending"
    PUBLISHED = "published"
    ACTIVE = "active"
    EXPIRED = "expired"
    SLASHED = "slashed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not CONTRACT_TRANSITIONS[self]

    def transition(self, target: ContractStatus) -> ContractStatus:
        if target not in CONTRACT_TRANSITIONS[self]:
            raise InvalidTransitionError(
                f"Invalid contract transition {self.value} -> {target.value}"
            )
        return target


REQUEST_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.PENDING: {
        RequestStatus.PINNED,
        RequestStatus.FAILED,
        RequestStatus.CANCELLED,
    },
    RequestStatus.PINNED: set(),
    RequestStatus.FAILED: set(),
    RequestStatus.CANCELLED: set(),
}

CONTRACT_TRANSITIONS: dict[ContractStatus, set[ContractStatus]] = {
    ContractStatus.PENDING: {
        ContractStatus.PUBLISHED,
        ContractStatus.ACTIVE,
        ContractStatus.EXPIRED,
        ContractStatus.SLASHED,
        ContractStatus.FAILED,
        ContractStatus.CANCELLED,
    },
    ContractStatus.PUBLISHED: {
        ContractStatus.ACTIVE,
        ContractStatus.EXPIRED,
        ContractStatus.SLASHED,
        ContractStatus.FAILED,
        ContractStatus.CANCELLED,
    },
    ContractStatus.ACTIVE: {
        ContractStatus.EXPIRED,
        ContractStatus.SLASHED,
        ContractStatus.FAILED,
    },
    ContractStatus.EXPIRED: set(),
    ContractStatus.SLASHED: set(),
    ContractStatus.FAILED: set(),
    ContractStatus.CANCELLED: set(),
}

# Contracts the deal monitor keeps reconciling
LIVE_CONTRACT_STATUSES = (
    ContractStatus.PENDING,
    ContractStatus.PUBLISHED,
    ContractStatus.ACTIVE,
)
