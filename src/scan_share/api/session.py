"""Per-request session dependency with bearer token auth."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from scan_share.domain.errors import AuthenticationError
from scan_share.services.auth import AuthContext

if TYPE_CHECKING:
    from scan_share.containers import AppContainer

_bearer = HTTPBearer(auto_error=False)


async def auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> AsyncIterator[AuthContext]:
    """Authenticate the caller and yield a signed-in session context."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    container: AppContainer = request.app.state.container
    try:
        identity = await container.identity_provider.authenticate(
            credentials.credentials
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc
    context = container.new_auth_context()
    context.sign_in(identity)
    try:
        yield context
    finally:
        await context.sign_out()


async def resolved_context(
    context: AuthContext = Depends(auth_context),
) -> AuthContext:
    """Session context whose role has been resolved."""
    await context.resolve_role()
    return context
