"""Pydantic models for the HTTP and WebSocket payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from scan_share.domain.access import RequestStatus
from scan_share.domain.models import Role


class RoleChoice(BaseModel):
    """Role chosen by the user."""

    role: Role


class RoleOut(BaseModel):
    """Resolved role for the caller."""

    role: Role
    selection_required: bool


class AccessRequestCreate(BaseModel):
    """Email address of the subject whose records are requested."""

    email: str


class AccessRequestResponse(BaseModel):
    """Subject's answer to an access request."""

    accept: bool


class IdentityOut(BaseModel):
    """Identity payload."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str


class AccessRequestOut(BaseModel):
    """Access request payload."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    target_email: str
    requester: IdentityOut
    status: RequestStatus
    created_at: datetime
    responded_at: datetime | None = None
    responder: IdentityOut | None = None


class RecordOut(BaseModel):
    """Measurement record payload."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    created_at: datetime
    measurements: dict[str, float]
    annotated_image_url: str | None = None
    scale_mm_per_px: float | None = None
