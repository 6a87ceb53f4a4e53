"""Signed-in session context exposing the consent workflow to callers."""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from scan_share.domain.access import AccessGrantRequest
from scan_share.domain.errors import InvalidStateError, StaleSessionError
from scan_share.domain.models import Identity, Role, Session
from scan_share.domain.records import Record
from scan_share.services.access import AccessRequestService
from scan_share.services.aggregator import (
    AggregatedView,
    AggregatorService,
    ChangeListener,
    ErrorListener,
    WarningListener,
)
from scan_share.services.live import ErrorHandler, LiveSubscription, SnapshotHandler
from scan_share.services.records import RecordService
from scan_share.services.roles import RoleResolution, RoleService

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Resolves bearer tokens to identities."""

    async def authenticate(self, access_token: str) -> Identity:
        """Return the identity for an access token."""


@dataclass
class AuthContext:
    """Owns one session and everything opened on its behalf."""

    role_service: RoleService
    access_service: AccessRequestService
    aggregator_service: AggregatorService
    record_service: RecordService
    session: Session | None = None
    _views: list[AggregatedView] = field(default_factory=list, init=False)
    _subscriptions: list[LiveSubscription] = field(default_factory=list, init=False)

    def sign_in(self, identity: Identity) -> Session:
        """Start a new session for an authenticated identity."""
        if self.session is not None:
            raise InvalidStateError("Sign out before signing in again")
        self.session = Session(identity=identity)
        logger.info("Session %s started for %s", self.session.id, identity.id)
        return self.session

    async def sign_out(self) -> None:
        """End the session and cancel everything it opened."""
        session = self.session
        if session is None:
            return
        session.token.cancel()
        self.session = None
        views, self._views = self._views, []
        subscriptions, self._subscriptions = self._subscriptions, []
        for view in views:
            await view.close()
        for subscription in subscriptions:
            await subscription.close()
        logger.info("Session %s ended", session.id)

    async def resolve_role(self) -> RoleResolution:
        """Resolve the current session's role."""
        return await self.role_service.resolve(self._require_session())

    async def set_role(self, role: Role) -> RoleResolution:
        """Record the role chosen for the current session."""
        return await self.role_service.choose(self._require_session(), role)

    async def create_access_request(self, email: str) -> AccessGrantRequest:
        """Ask the owner of an email address for access to their records."""
        session = self._require_role(Role.REVIEWER)
        request = await self.access_service.create_request(session.identity, email)
        self._ensure_live(session)
        return request

    async def list_incoming_requests(self) -> list[AccessGrantRequest]:
        """Return the requests addressed to the current session's email."""
        session = self._require_role(Role.SUBJECT)
        requests = await self.access_service.list_requests_for_identity(session.email)
        self._ensure_live(session)
        return requests

    async def subscribe_incoming_requests(
        self,
        on_snapshot: SnapshotHandler[AccessGrantRequest],
        on_error: ErrorHandler,
    ) -> LiveSubscription:
        """Follow the requests addressed to the current session's email."""
        session = self._require_role(Role.SUBJECT)

        def deliver(requests: list[AccessGrantRequest]) -> None:
            if session.is_live:
                on_snapshot(requests)

        def fail(exc: Exception) -> None:
            if session.is_live:
                on_error(exc)

        subscription = await self.access_service.subscribe_requests_for_identity(
            session.email, deliver, fail
        )
        if not session.is_live:
            await subscription.close()
            raise StaleSessionError(f"Session {session.id} has ended")
        self._subscriptions.append(subscription)
        return subscription

    async def respond_to_request(
        self, request_id: str, accept: bool
    ) -> AccessGrantRequest:
        """Accept or decline a request addressed to the current session."""
        session = self._require_role(Role.SUBJECT)
        return await self.access_service.respond(request_id, session.identity, accept)

    async def retry_authorization(self, request_id: str) -> AccessGrantRequest:
        """Retry granting access for a request that was accepted."""
        session = self._require_role(Role.SUBJECT)
        return await self.access_service.retry_authorization(
            request_id, session.identity
        )

    async def list_own_records(self) -> list[Record]:
        """Return the current subject's most recent records."""
        session = self._require_role(Role.SUBJECT)
        records = await self.record_service.list_records(session.identity.id)
        self._ensure_live(session)
        return records

    async def open_aggregated_view(
        self,
        reviewer_id: str | None = None,
        on_change: ChangeListener | None = None,
        on_error: ErrorListener | None = None,
        on_warning: WarningListener | None = None,
    ) -> AggregatedView:
        """Open the merged records view for the current reviewer."""
        session = self._require_role(Role.REVIEWER)
        reviewer_id = reviewer_id or session.identity.id
        if reviewer_id != session.identity.id:
            raise InvalidStateError("Reviewers can only open their own view")
        view = await self.aggregator_service.open_view(
            reviewer_id,
            on_change=on_change,
            on_error=on_error,
            on_warning=on_warning,
        )
        if not session.is_live:
            await view.close()
            raise StaleSessionError(f"Session {session.id} has ended")
        self._views.append(view)
        return view

    async def close_aggregated_view(self, view: AggregatedView) -> None:
        """Close a view opened through this context."""
        if view in self._views:
            self._views.remove(view)
        await self.aggregator_service.close_view(view)

    def _require_session(self) -> Session:
        if self.session is None:
            raise InvalidStateError("No signed-in session")
        return self.session

    def _require_role(self, role: Role) -> Session:
        session = self._require_session()
        if session.role is not role:
            raise InvalidStateError(
                f"Operation requires role {role.value}, session is {session.role.value}"
            )
        return session

    def _ensure_live(self, session: Session) -> None:
        if not session.is_live:
            raise StaleSessionError(f"Session {session.id} has ended")
