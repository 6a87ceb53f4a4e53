"""Role resolution for signed-in sessions."""

import logging
from dataclasses import dataclass
from typing import Protocol

from scan_share.domain.errors import (
    InvalidStateError,
    RoleResolutionError,
    StaleSessionError,
    TransientIOError,
    ValidationError,
)
from scan_share.domain.models import Identity, Role, Session

logger = logging.getLogger(__name__)

SELECTABLE_ROLES = frozenset({Role.SUBJECT, Role.REVIEWER})


class RoleRepository(Protocol):
    """Persistence interface for role records and the reviewer roster."""

    async def get_role(self, user_id: str) -> str | None:
        """Return the stored role for a user id, if any."""

    async def upsert_role(self, identity: Identity, role: Role) -> None:
        """Create or update the role record for an identity."""

    async def is_listed_reviewer(self, identity: Identity) -> bool:
        """Return whether the identity is on the reviewer roster by id or email."""

    async def add_reviewer(self, identity: Identity) -> None:
        """Add the identity to the reviewer roster, creating it if absent."""


@dataclass(frozen=True)
class RoleResolution:
    """Outcome of resolving a session's role."""

    role: Role

    @property
    def selection_required(self) -> bool:
        return self.role is Role.UNKNOWN


@dataclass
class RoleService:
    """Resolves and records which role a session plays."""

    repository: RoleRepository

    async def resolve(self, session: Session) -> RoleResolution:
        """Resolve the role for a session from durable state."""
        identity = session.identity
        try:
            stored = _parse_role(await self.repository.get_role(identity.id))
            if stored is not Role.UNKNOWN:
                return self._apply(session, stored)
            listed = await self.repository.is_listed_reviewer(identity)
            if listed:
                _ensure_live(session)
                await self.repository.upsert_role(identity, Role.REVIEWER)
                return self._apply(session, Role.REVIEWER)
        except TransientIOError as exc:
            logger.warning("Role lookup failed for %s", identity.id)
            raise RoleResolutionError(f"Could not resolve role: {exc}") from exc
        return self._apply(session, Role.UNKNOWN)

    async def choose(self, session: Session, role: Role) -> RoleResolution:
        """Persist an explicit role choice for a session."""
        if role not in SELECTABLE_ROLES:
            raise ValidationError(f"Role must be one of subject, reviewer: {role}")
        _ensure_no_switch(session, role)
        identity = session.identity
        try:
            await self.repository.upsert_role(identity, role)
            if role is Role.REVIEWER:
                _ensure_live(session)
                await self.repository.add_reviewer(identity)
        except TransientIOError as exc:
            logger.warning("Role write failed for %s", identity.id)
            raise RoleResolutionError(f"Could not save role: {exc}") from exc
        return self._apply(session, role)

    def _apply(self, session: Session, role: Role) -> RoleResolution:
        _ensure_live(session)
        _ensure_no_switch(session, role)
        if role is not Role.UNKNOWN:
            session.role = role
        return RoleResolution(role=role)


def _parse_role(value: str | None) -> Role:
    if not value:
        return Role.UNKNOWN
    try:
        return Role(value)
    except ValueError:
        logger.warning("Ignoring unrecognized stored role %r", value)
        return Role.UNKNOWN


def _ensure_no_switch(session: Session, role: Role) -> None:
    if session.role not in {Role.UNKNOWN, role} and role is not Role.UNKNOWN:
        raise InvalidStateError(
            f"Session already has role {session.role.value}; cannot switch"
        )


def _ensure_live(session: Session) -> None:
    if not session.is_live:
        logger.info("Discarding role result for ended session %s", session.id)
        raise StaleSessionError(f"Session {session.id} has ended")
