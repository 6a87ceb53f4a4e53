"""Supabase-backed access grant requests."""

from dataclasses import dataclass
from datetime import datetime
from functools import partial

from supabase import AsyncClient

from scan_share.adapters.supabase_errors import store_errors
from scan_share.adapters.supabase_live_query import SupabaseLiveQuery
from scan_share.domain.access import AccessGrantRequest, RequestStatus
from scan_share.domain.models import Identity
from scan_share.services.access import AccessRequestRepository
from scan_share.services.live import ErrorHandler, LiveSubscription, SnapshotHandler

_COLUMNS = (
    "id, target_email, requester_id, requester_email, status, created_at, "
    "responded_at, responder_id, responder_email"
)


@dataclass
class SupabaseAccessRequestRepository(AccessRequestRepository):
    """Supabase implementation for access requests."""

    client: AsyncClient

    async def create_request(
        self, requester: Identity, target_email: str, created_at: datetime
    ) -> AccessGrantRequest:
        """Insert a pending request row and return it."""
        with store_errors("create access request"):
            response = (
                await self.client.table("access_requests")
                .insert(
                    {
                        "target_email": target_email,
                        "requester_id": requester.id,
                        "requester_email": requester.email,
                        "status": RequestStatus.PENDING.value,
                        "created_at": created_at.isoformat(),
                    }
                )
                .execute()
            )
        if not response.data:
            raise RuntimeError("Failed to create access request in Supabase")
        return _to_request(response.data[0])

    async def get_request(self, request_id: str) -> AccessGrantRequest | None:
        """Return a request by id, if present."""
        with store_errors("read access request"):
            response = (
                await self.client.table("access_requests")
                .select(_COLUMNS)
                .eq("id", request_id)
                .limit(1)
                .execute()
            )
        if not response.data:
            return None
        return _to_request(response.data[0])

    async def mark_responded(
        self,
        request_id: str,
        status: RequestStatus,
        responder: Identity,
        responded_at: datetime,
    ) -> AccessGrantRequest | None:
        """Update the request only while it is still pending."""
        with store_errors("update access request"):
            response = (
                await self.client.table("access_requests")
                .update(
                    {
                        "status": status.value,
                        "responded_at": responded_at.isoformat(),
                        "responder_id": responder.id,
                        "responder_email": responder.email,
                    }
                )
                .eq("id", request_id)
                .eq("status", RequestStatus.PENDING.value)
                .execute()
            )
        if not response.data:
            return None
        return _to_request(response.data[0])

    async def list_for_target(self, target_email: str) -> list[AccessGrantRequest]:
        """Return every request addressed to an email, newest first."""
        with store_errors("list access requests"):
            response = (
                await self.client.table("access_requests")
                .select(_COLUMNS)
                .eq("target_email", target_email)
                .order("created_at", desc=True)
                .execute()
            )
        return [_to_request(row) for row in response.data or []]

    async def subscribe_for_target(
        self,
        target_email: str,
        on_snapshot: SnapshotHandler[AccessGrantRequest],
        on_error: ErrorHandler,
    ) -> LiveSubscription:
        """Follow the requests addressed to an email."""
        query = SupabaseLiveQuery(
            client=self.client,
            table="access_requests",
            fetch=partial(self.list_for_target, target_email),
            on_snapshot=on_snapshot,
            on_error=on_error,
            row_filter=f"target_email=eq.{target_email}",
        )
        await query.start()
        return query


def _to_request(row: dict[str, object]) -> AccessGrantRequest:
    responder = None
    if row.get("responder_id"):
        responder = Identity(
            id=str(row["responder_id"]), email=str(row.get("responder_email") or "")
        )
    responded_at = row.get("responded_at")
    return AccessGrantRequest(
        id=str(row["id"]),
        target_email=str(row["target_email"]),
        requester=Identity(
            id=str(row["requester_id"]), email=str(row.get("requester_email") or "")
        ),
        status=RequestStatus(row["status"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        responded_at=datetime.fromisoformat(str(responded_at))
        if responded_at
        else None,
        responder=responder,
    )
