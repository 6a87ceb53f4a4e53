"""Domain models for access grant requests."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from scan_share.domain.models import Identity


class RequestStatus(str, Enum):
    """Lifecycle of an access grant request."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


@dataclass(frozen=True)
class AccessGrantRequest:
    """A reviewer's request to see a subject's records."""

    id: str
    target_email: str
    requester: Identity
    status: RequestStatus
    created_at: datetime
    responded_at: datetime | None = None
    responder: Identity | None = None

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING


@dataclass(frozen=True)
class SubjectRef:
    """A subject currently authorizing a reviewer."""

    id: str
    email: str | None = None
