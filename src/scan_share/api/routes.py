"""Role, access request and record endpoints."""

from fastapi import APIRouter, Depends, status

from scan_share.api.schemas import (
    AccessRequestCreate,
    AccessRequestOut,
    AccessRequestResponse,
    RecordOut,
    RoleChoice,
    RoleOut,
)
from scan_share.api.session import auth_context, resolved_context
from scan_share.services.auth import AuthContext

router = APIRouter()


@router.get("/me/role")
async def get_role(context: AuthContext = Depends(auth_context)) -> RoleOut:
    """Resolve the caller's role."""
    resolution = await context.resolve_role()
    return RoleOut(
        role=resolution.role, selection_required=resolution.selection_required
    )


@router.put("/me/role")
async def put_role(
    choice: RoleChoice, context: AuthContext = Depends(resolved_context)
) -> RoleOut:
    """Record the caller's role choice."""
    resolution = await context.set_role(choice.role)
    return RoleOut(
        role=resolution.role, selection_required=resolution.selection_required
    )


@router.post("/requests", status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: AccessRequestCreate, context: AuthContext = Depends(resolved_context)
) -> AccessRequestOut:
    """Ask a subject for access to their records."""
    request = await context.create_access_request(payload.email)
    return AccessRequestOut.model_validate(request)


@router.get("/requests/incoming")
async def incoming_requests(
    context: AuthContext = Depends(resolved_context),
) -> dict[str, list[AccessRequestOut]]:
    """Return the requests addressed to the caller."""
    requests = await context.list_incoming_requests()
    return {"requests": [AccessRequestOut.model_validate(item) for item in requests]}


@router.post("/requests/{request_id}/respond")
async def respond(
    request_id: str,
    payload: AccessRequestResponse,
    context: AuthContext = Depends(resolved_context),
) -> AccessRequestOut:
    """Accept or decline an access request."""
    request = await context.respond_to_request(request_id, payload.accept)
    return AccessRequestOut.model_validate(request)


@router.post("/requests/{request_id}/retry-authorization")
async def retry_authorization(
    request_id: str, context: AuthContext = Depends(resolved_context)
) -> AccessRequestOut:
    """Retry the grant step of an accepted request."""
    request = await context.retry_authorization(request_id)
    return AccessRequestOut.model_validate(request)


@router.get("/records/mine")
async def my_records(
    context: AuthContext = Depends(resolved_context),
) -> dict[str, list[RecordOut]]:
    """Return the caller's own recent records."""
    records = await context.list_own_records()
    return {"records": [RecordOut.model_validate(record) for record in records]}
