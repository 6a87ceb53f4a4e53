"""Supabase-backed role records and reviewer roster."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import AsyncClient

from scan_share.adapters.supabase_errors import store_errors
from scan_share.domain.models import Identity, Role
from scan_share.services.roles import RoleRepository


@dataclass
class SupabaseRoleRepository(RoleRepository):
    """Supabase implementation for role persistence."""

    client: AsyncClient

    async def get_role(self, user_id: str) -> str | None:
        """Return the stored role for a user, if present."""
        with store_errors("read role"):
            response = (
                await self.client.table("user_roles")
                .select("id, role")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        if response.data:
            return response.data[0].get("role")
        return None

    async def upsert_role(self, identity: Identity, role: Role) -> None:
        """Create or replace the role row for an identity."""
        with store_errors("save role"):
            await (
                self.client.table("user_roles")
                .upsert(
                    {
                        "id": identity.id,
                        "email": identity.email,
                        "role": role.value,
                        "updated_at": datetime.now(tz=UTC).isoformat(),
                    },
                    on_conflict="id",
                )
                .execute()
            )

    async def is_listed_reviewer(self, identity: Identity) -> bool:
        """Return whether the roster lists the identity by id or email."""
        with store_errors("read reviewer roster"):
            response = (
                await self.client.table("reviewer_roster")
                .select("id")
                .or_(f'id.eq."{identity.id}",email.eq."{identity.email}"')
                .limit(1)
                .execute()
            )
        return bool(response.data)

    async def add_reviewer(self, identity: Identity) -> None:
        """Add the identity to the reviewer roster."""
        with store_errors("update reviewer roster"):
            await (
                self.client.table("reviewer_roster")
                .upsert(
                    {"id": identity.id, "email": identity.email},
                    on_conflict="id",
                )
                .execute()
            )
