"""Error taxonomy shared by the gateway, the pipeline and the collaborator clients.

Callers outside the service only ever see ``code``; the message stays in
the logs.
"""

from __future__ import annotations


class PindealError(Exception):
    """Base class for all service errors."""

    code = "internal_error"


# ── Synchronous caller errors (never retried) ──────────────


class ValidationError(PindealError):
    code = "validation_error"


class NotFoundError(PindealError):
    code = "not_found"


class InvalidStateError(PindealError):
    code = "invalid_state"


class RateLimitedError(PindealError):
    code = "rate_limited"

    def __init__(self, message: str = "rate limit exceeded", retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


# ── Collaborator errors ────────────────────────────────────


class TransientCollaboratorError(PindealError):
    """The storage network or the ledger is temporarily unreachable."""

    code = "collaborator_unavailable"


class PermanentError(PindealError):
    """Retrying will not help: bad identifiers, rejected terms, missing content."""

    code = "permanent_error"


class ContentUnavailableError(PermanentError):
    code = "content_unavailable"


class PinFailedError(PermanentError):
    code = "pin_failed"


class NegotiationError(PermanentError):
    code = "deal_negotiation_failed"
