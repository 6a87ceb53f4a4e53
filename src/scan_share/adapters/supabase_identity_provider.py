"""Supabase Auth identity provider."""

from dataclasses import dataclass

from supabase import AsyncClient, AuthError

from scan_share.adapters.supabase_errors import store_errors
from scan_share.domain.errors import AuthenticationError
from scan_share.domain.models import Identity
from scan_share.services.auth import IdentityProvider


@dataclass
class SupabaseIdentityProvider(IdentityProvider):
    """Validates access tokens against Supabase Auth."""

    client: AsyncClient

    async def authenticate(self, access_token: str) -> Identity:
        """Return the identity behind an access token."""
        with store_errors("authenticate"):
            try:
                response = await self.client.auth.get_user(access_token)
            except AuthError as exc:
                raise AuthenticationError("Invalid access token") from exc
        user = response.user if response else None
        if user is None or not user.email:
            raise AuthenticationError("Access token has no user with an email")
        return Identity(id=str(user.id), email=user.email)
