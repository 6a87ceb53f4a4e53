"""Shared test fixtures."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from scan_share.config import Settings
from scan_share.containers import AppContainer
from scan_share.domain.access import AccessGrantRequest, RequestStatus, SubjectRef
from scan_share.domain.errors import AuthenticationError, TransientIOError
from scan_share.domain.models import Identity, Role
from scan_share.domain.records import Record
from scan_share.services.access import (
    AccessRequestRepository,
    AccessRequestService,
    AuthorizationRepository,
)
from scan_share.services.aggregator import AggregatorService
from scan_share.services.auth import AuthContext, IdentityProvider
from scan_share.services.records import RecordRepository, RecordService
from scan_share.services.roles import RoleRepository, RoleService

BASE_TIME = datetime(2025, 9, 1, 12, 0, tzinfo=UTC)


async def settle(rounds: int = 5) -> None:
    """Let background tasks spawned by callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_record(owner_id: str, minutes: int, record_id: str | None = None) -> Record:
    return Record(
        id=record_id or str(uuid4()),
        owner_id=owner_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        measurements={"index_finger_length": 72.5},
    )


@dataclass(eq=False)
class FakeSubscription:
    """Live subscription handle that records whether it was closed."""

    on_snapshot: Callable[[list], None]
    on_error: Callable[[Exception], None]
    closed: bool = False
    close_calls: int = 0

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    def deliver(self, items: list) -> None:
        if not self.closed:
            self.on_snapshot(items)

    def fail(self, exc: Exception) -> None:
        if not self.closed:
            self.on_error(exc)


@dataclass
class InMemoryRoleRepository(RoleRepository):
    """In-memory role records and reviewer roster for tests."""

    roles: dict[str, tuple[str, str]] = field(default_factory=dict)
    roster: dict[str, str] = field(default_factory=dict)
    fail: bool = False
    writes: list[str] = field(default_factory=list)

    async def get_role(self, user_id: str) -> str | None:
        self._check()
        entry = self.roles.get(user_id)
        return entry[0] if entry else None

    async def upsert_role(self, identity: Identity, role: Role) -> None:
        self._check()
        self.writes.append(f"role:{identity.id}:{role.value}")
        self.roles[identity.id] = (role.value, identity.email)

    async def is_listed_reviewer(self, identity: Identity) -> bool:
        self._check()
        return identity.id in self.roster or identity.email in self.roster.values()

    async def add_reviewer(self, identity: Identity) -> None:
        self._check()
        self.writes.append(f"roster:{identity.id}")
        self.roster[identity.id] = identity.email

    def _check(self) -> None:
        if self.fail:
            raise TransientIOError("store unavailable")


@dataclass
class InMemoryAccessRequestRepository(AccessRequestRepository):
    """In-memory access request store for tests."""

    requests: dict[str, AccessGrantRequest] = field(default_factory=dict)
    subscriptions: dict[str, list[FakeSubscription]] = field(default_factory=dict)

    async def create_request(
        self, requester: Identity, target_email: str, created_at: datetime
    ) -> AccessGrantRequest:
        request = AccessGrantRequest(
            id=str(uuid4()),
            target_email=target_email,
            requester=requester,
            status=RequestStatus.PENDING,
            created_at=created_at,
        )
        self.requests[request.id] = request
        self._notify(target_email)
        return request

    async def get_request(self, request_id: str) -> AccessGrantRequest | None:
        return self.requests.get(request_id)

    async def mark_responded(
        self,
        request_id: str,
        status: RequestStatus,
        responder: Identity,
        responded_at: datetime,
    ) -> AccessGrantRequest | None:
        current = self.requests.get(request_id)
        if current is None or current.status is not RequestStatus.PENDING:
            return None
        updated = AccessGrantRequest(
            id=current.id,
            target_email=current.target_email,
            requester=current.requester,
            status=status,
            created_at=current.created_at,
            responded_at=responded_at,
            responder=responder,
        )
        self.requests[request_id] = updated
        self._notify(current.target_email)
        return updated

    async def list_for_target(self, target_email: str) -> list[AccessGrantRequest]:
        return [
            request
            for request in self.requests.values()
            if request.target_email == target_email
        ]

    async def subscribe_for_target(
        self, target_email: str, on_snapshot, on_error
    ) -> FakeSubscription:
        subscription = FakeSubscription(on_snapshot, on_error)
        self.subscriptions.setdefault(target_email, []).append(subscription)
        subscription.deliver(await self.list_for_target(target_email))
        return subscription

    def _notify(self, target_email: str) -> None:
        current = [
            request
            for request in self.requests.values()
            if request.target_email == target_email
        ]
        for subscription in self.subscriptions.get(target_email, []):
            subscription.deliver(list(current))


@dataclass
class InMemoryAuthorizationRepository(AuthorizationRepository):
    """In-memory grant relation with controllable roster subscriptions."""

    grants: dict[str, set[str]] = field(default_factory=dict)
    emails: dict[str, str] = field(default_factory=dict)
    subscriptions: dict[str, list[FakeSubscription]] = field(default_factory=dict)
    fail_grant: bool = False
    fail_subscribe: bool = False
    grant_calls: int = 0

    async def grant(self, subject: Identity, reviewer_id: str) -> None:
        self.grant_calls += 1
        if self.fail_grant:
            raise TransientIOError("grant write failed")
        self.grants.setdefault(subject.id, set()).add(reviewer_id)
        self.emails[subject.id] = subject.email
        self._notify(reviewer_id)

    async def subscribe_subjects(
        self, reviewer_id: str, on_snapshot, on_error
    ) -> FakeSubscription:
        if self.fail_subscribe:
            raise TransientIOError("roster subscription failed")
        subscription = FakeSubscription(on_snapshot, on_error)
        self.subscriptions.setdefault(reviewer_id, []).append(subscription)
        subscription.deliver(self.subjects_for(reviewer_id))
        return subscription

    def subjects_for(self, reviewer_id: str) -> list[SubjectRef]:
        return [
            SubjectRef(id=subject_id, email=self.emails.get(subject_id))
            for subject_id, reviewers in sorted(self.grants.items())
            if reviewer_id in reviewers
        ]

    def revoke(self, subject_id: str, reviewer_id: str) -> None:
        self.grants.get(subject_id, set()).discard(reviewer_id)
        self._notify(reviewer_id)

    def _notify(self, reviewer_id: str) -> None:
        for subscription in self.subscriptions.get(reviewer_id, []):
            subscription.deliver(self.subjects_for(reviewer_id))


@dataclass
class InMemoryRecordRepository(RecordRepository):
    """In-memory records with controllable per-subject subscriptions."""

    records: dict[str, list[Record]] = field(default_factory=dict)
    subscriptions: dict[str, list[FakeSubscription]] = field(default_factory=dict)
    fail_subscribe: set[str] = field(default_factory=set)
    subscribe_calls: list[str] = field(default_factory=list)

    async def list_records(self, owner_id: str, limit: int) -> list[Record]:
        records = sorted(
            self.records.get(owner_id, []),
            key=lambda record: record.created_at,
            reverse=True,
        )
        return records[:limit]

    async def subscribe_records(
        self, owner_id: str, limit: int, on_snapshot, on_error
    ) -> FakeSubscription:
        self.subscribe_calls.append(owner_id)
        if owner_id in self.fail_subscribe:
            raise TransientIOError(f"cannot subscribe to {owner_id}")
        subscription = FakeSubscription(on_snapshot, on_error)
        self.subscriptions.setdefault(owner_id, []).append(subscription)
        subscription.deliver(await self.list_records(owner_id, limit))
        return subscription

    def add_record(self, record: Record) -> None:
        self.records.setdefault(record.owner_id, []).append(record)
        snapshot = sorted(
            self.records[record.owner_id],
            key=lambda item: item.created_at,
            reverse=True,
        )
        for subscription in self.subscriptions.get(record.owner_id, []):
            subscription.deliver(list(snapshot))

    def open_subscriptions(self, owner_id: str | None = None) -> list[FakeSubscription]:
        return [
            subscription
            for owner, subscriptions in self.subscriptions.items()
            if owner_id is None or owner == owner_id
            for subscription in subscriptions
            if not subscription.closed
        ]


@dataclass
class FakeIdentityProvider(IdentityProvider):
    """Maps bearer tokens to identities."""

    identities: dict[str, Identity] = field(default_factory=dict)

    async def authenticate(self, access_token: str) -> Identity:
        identity = self.identities.get(access_token)
        if identity is None:
            raise AuthenticationError("Invalid access token")
        return identity


REVIEWER = Identity(id="reviewer-1", email="r@x.com")
SUBJECT = Identity(id="subject-1", email="p@x.com")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_key="header.payload.signature",
    )


@pytest.fixture
def role_repository() -> InMemoryRoleRepository:
    return InMemoryRoleRepository()


@pytest.fixture
def request_repository() -> InMemoryAccessRequestRepository:
    return InMemoryAccessRequestRepository()


@pytest.fixture
def authorization_repository() -> InMemoryAuthorizationRepository:
    return InMemoryAuthorizationRepository()


@pytest.fixture
def record_repository() -> InMemoryRecordRepository:
    return InMemoryRecordRepository()


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider(
        identities={"reviewer-token": REVIEWER, "subject-token": SUBJECT}
    )


@pytest.fixture
def container(  # noqa: PLR0913
    settings: Settings,
    role_repository: InMemoryRoleRepository,
    request_repository: InMemoryAccessRequestRepository,
    authorization_repository: InMemoryAuthorizationRepository,
    record_repository: InMemoryRecordRepository,
    identity_provider: FakeIdentityProvider,
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        identity_provider=identity_provider,
        role_service=RoleService(role_repository),
        access_service=AccessRequestService(
            requests=request_repository,
            authorizations=authorization_repository,
        ),
        aggregator_service=AggregatorService(
            authorizations=authorization_repository,
            records=record_repository,
            limit=settings.record_limit,
        ),
        record_service=RecordService(record_repository, limit=settings.record_limit),
        close_resources=close_resources,
    )


@pytest.fixture
def auth_context(container: AppContainer) -> AuthContext:
    return container.new_auth_context()
