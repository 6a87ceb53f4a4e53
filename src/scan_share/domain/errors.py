"""Error taxonomy for the consent and synchronization services."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scan_share.domain.access import AccessGrantRequest


class ScanShareError(Exception):
    """Base class for errors surfaced to callers."""


class ValidationError(ScanShareError):
    """Raised when input is malformed."""


class NotFoundError(ScanShareError):
    """Raised when operating on a request that does not exist."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Access request {request_id} not found")


class InvalidStateError(ScanShareError):
    """Raised when an operation is not allowed in the current state."""


class TransientIOError(ScanShareError):
    """Raised when a durable read or write failed."""


class RoleResolutionError(TransientIOError):
    """Raised when the role lookup or role write failed."""


class StaleSessionError(ScanShareError):
    """Raised when a result arrives for a session that has ended."""


class PartialFailure(ScanShareError):
    """Raised when a request was accepted but the grant write failed."""

    def __init__(self, request: AccessGrantRequest, cause: Exception) -> None:
        self.request = request
        self.cause = cause
        super().__init__(
            f"Access request {request.id} was accepted but granting access failed"
        )


class SubscriptionError(ScanShareError):
    """Raised when a live subscription broke."""

    def __init__(self, message: str, subject_id: str | None = None) -> None:
        self.subject_id = subject_id
        super().__init__(message)


class AuthenticationError(ScanShareError):
    """Raised when an access token does not identify a user."""
