"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import AsyncClient

from scan_share.adapters.supabase_access_repository import (
    SupabaseAccessRequestRepository,
)
from scan_share.adapters.supabase_authorization_repository import (
    SupabaseAuthorizationRepository,
)
from scan_share.adapters.supabase_identity_provider import SupabaseIdentityProvider
from scan_share.adapters.supabase_record_repository import SupabaseRecordRepository
from scan_share.adapters.supabase_role_repository import SupabaseRoleRepository
from scan_share.config import Settings
from scan_share.services.access import AccessRequestService
from scan_share.services.aggregator import AggregatorService
from scan_share.services.auth import AuthContext, IdentityProvider
from scan_share.services.records import RecordService
from scan_share.services.roles import RoleService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    identity_provider: IdentityProvider
    role_service: RoleService
    access_service: AccessRequestService
    aggregator_service: AggregatorService
    record_service: RecordService
    close_resources: Callable[[], Awaitable[None]]

    def new_auth_context(self) -> AuthContext:
        """Create an empty session context sharing the container's services."""
        return AuthContext(
            role_service=self.role_service,
            access_service=self.access_service,
            aggregator_service=self.aggregator_service,
            record_service=self.record_service,
        )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = AsyncClient(
        resolved_settings.supabase_url, resolved_settings.supabase_key
    )
    authorization_repository = SupabaseAuthorizationRepository(supabase_client)
    record_repository = SupabaseRecordRepository(supabase_client)
    role_service = RoleService(SupabaseRoleRepository(supabase_client))
    access_service = AccessRequestService(
        requests=SupabaseAccessRequestRepository(supabase_client),
        authorizations=authorization_repository,
    )
    aggregator_service = AggregatorService(
        authorizations=authorization_repository,
        records=record_repository,
        limit=resolved_settings.record_limit,
    )
    record_service = RecordService(
        record_repository, limit=resolved_settings.record_limit
    )

    async def close_resources() -> None:
        await supabase_client.remove_all_channels()

    return AppContainer(
        settings=resolved_settings,
        identity_provider=SupabaseIdentityProvider(supabase_client),
        role_service=role_service,
        access_service=access_service,
        aggregator_service=aggregator_service,
        record_service=record_service,
        close_resources=close_resources,
    )
