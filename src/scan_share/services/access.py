"""Access grant request workflow."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from scan_share.domain.access import AccessGrantRequest, RequestStatus, SubjectRef
from scan_share.domain.errors import (
    InvalidStateError,
    NotFoundError,
    PartialFailure,
    TransientIOError,
    ValidationError,
)
from scan_share.domain.models import Identity
from scan_share.services.live import ErrorHandler, LiveSubscription, SnapshotHandler

logger = logging.getLogger(__name__)


class AccessRequestRepository(Protocol):
    """Persistence interface for access grant requests."""

    async def create_request(
        self, requester: Identity, target_email: str, created_at: datetime
    ) -> AccessGrantRequest:
        """Create a pending request and return it."""

    async def get_request(self, request_id: str) -> AccessGrantRequest | None:
        """Return a request by id, if present."""

    async def mark_responded(
        self,
        request_id: str,
        status: RequestStatus,
        responder: Identity,
        responded_at: datetime,
    ) -> AccessGrantRequest | None:
        """Move a pending request to a terminal status.

        Returns None when the request was no longer pending.
        """

    async def list_for_target(self, target_email: str) -> list[AccessGrantRequest]:
        """Return every request addressed to an email, newest first."""

    async def subscribe_for_target(
        self,
        target_email: str,
        on_snapshot: SnapshotHandler[AccessGrantRequest],
        on_error: ErrorHandler,
    ) -> LiveSubscription:
        """Subscribe to the requests addressed to an email, newest first."""


class AuthorizationRepository(Protocol):
    """Persistence interface for the subject to reviewer grant relation."""

    async def grant(self, subject: Identity, reviewer_id: str) -> None:
        """Add a reviewer to a subject's grant set; adding twice is a no-op."""

    async def subscribe_subjects(
        self,
        reviewer_id: str,
        on_snapshot: SnapshotHandler[SubjectRef],
        on_error: ErrorHandler,
    ) -> LiveSubscription:
        """Subscribe to the subjects whose grant set contains the reviewer."""


@dataclass
class AccessRequestService:
    """Creates access requests and applies subjects' responses to them."""

    requests: AccessRequestRepository
    authorizations: AuthorizationRepository

    async def create_request(
        self, requester: Identity, target_email: str
    ) -> AccessGrantRequest:
        """Create a pending request from a reviewer to an email address."""
        if not isinstance(target_email, str) or "@" not in target_email:
            raise ValidationError("Please enter a valid email address.")
        request = await self.requests.create_request(
            requester=requester,
            target_email=target_email,
            created_at=datetime.now(tz=UTC),
        )
        logger.info("Access request %s created by %s", request.id, requester.id)
        return request

    async def list_requests_for_identity(
        self, email: str
    ) -> list[AccessGrantRequest]:
        """Return all requests addressed to an email, newest first."""
        requests = await self.requests.list_for_target(email)
        return sorted(requests, key=lambda item: item.created_at, reverse=True)

    async def subscribe_requests_for_identity(
        self,
        email: str,
        on_snapshot: SnapshotHandler[AccessGrantRequest],
        on_error: ErrorHandler,
    ) -> LiveSubscription:
        """Subscribe to the requests addressed to an email."""

        def deliver(requests: list[AccessGrantRequest]) -> None:
            on_snapshot(
                sorted(requests, key=lambda item: item.created_at, reverse=True)
            )

        return await self.requests.subscribe_for_target(email, deliver, on_error)

    async def respond(
        self, request_id: str, responder: Identity, accept: bool
    ) -> AccessGrantRequest:
        """Accept or decline a pending request addressed to the responder."""
        current = await self.requests.get_request(request_id)
        if current is None or current.target_email != responder.email:
            raise NotFoundError(request_id)
        if not current.is_pending:
            raise InvalidStateError(
                f"Access request {request_id} is already {current.status.value}"
            )
        status = RequestStatus.ACCEPTED if accept else RequestStatus.DECLINED
        updated = await self.requests.mark_responded(
            request_id,
            status=status,
            responder=responder,
            responded_at=datetime.now(tz=UTC),
        )
        if updated is None:
            raise InvalidStateError(
                f"Access request {request_id} was answered concurrently"
            )
        logger.info("Access request %s %s by %s", request_id, status.value, responder.id)
        if accept:
            await self._grant(updated, responder)
        return updated

    async def retry_authorization(
        self, request_id: str, responder: Identity
    ) -> AccessGrantRequest:
        """Re-run the grant step for a request that was already accepted."""
        current = await self.requests.get_request(request_id)
        if current is None or current.target_email != responder.email:
            raise NotFoundError(request_id)
        if current.status is not RequestStatus.ACCEPTED:
            raise InvalidStateError(
                f"Access request {request_id} is {current.status.value}, not accepted"
            )
        await self._grant(current, responder)
        return current

    async def _grant(self, request: AccessGrantRequest, responder: Identity) -> None:
        try:
            await self.authorizations.grant(responder, request.requester.id)
        except TransientIOError as exc:
            logger.exception(
                "Request %s accepted but granting %s access failed",
                request.id,
                request.requester.id,
            )
            raise PartialFailure(request, exc) from exc
