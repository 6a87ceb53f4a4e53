"""Domain models for identities and sessions."""

from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4


class Role(str, Enum):
    """Role a session plays in the consent workflow."""

    SUBJECT = "subject"
    REVIEWER = "reviewer"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Identity:
    """Authenticated identity supplied by the identity provider."""

    id: str
    email: str


@dataclass
class CancellationToken:
    """Flag checked by asynchronous continuations before mutating state."""

    cancelled: bool = False

    def cancel(self) -> None:
        """Mark the token as cancelled."""
        self.cancelled = True


@dataclass
class Session:
    """A signed-in session and its resolved role."""

    identity: Identity
    role: Role = Role.UNKNOWN
    id: str = field(default_factory=lambda: str(uuid4()))
    token: CancellationToken = field(default_factory=CancellationToken)

    @property
    def email(self) -> str:
        return self.identity.email

    @property
    def is_live(self) -> bool:
        return not self.token.cancelled
