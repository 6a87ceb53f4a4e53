"""Supabase-backed subject to reviewer grants."""

from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial

from supabase import AsyncClient

from scan_share.adapters.supabase_errors import store_errors
from scan_share.adapters.supabase_live_query import SupabaseLiveQuery
from scan_share.domain.access import SubjectRef
from scan_share.domain.models import Identity
from scan_share.services.access import AuthorizationRepository
from scan_share.services.live import ErrorHandler, LiveSubscription, SnapshotHandler


@dataclass
class SupabaseAuthorizationRepository(AuthorizationRepository):
    """Stores one access_grants row per (subject, reviewer) pair."""

    client: AsyncClient

    async def grant(self, subject: Identity, reviewer_id: str) -> None:
        """Insert the pair, leaving an existing row untouched."""
        with store_errors("grant access"):
            await (
                self.client.table("access_grants")
                .upsert(
                    {
                        "subject_id": subject.id,
                        "subject_email": subject.email,
                        "reviewer_id": reviewer_id,
                        "granted_at": datetime.now(tz=UTC).isoformat(),
                    },
                    on_conflict="subject_id,reviewer_id",
                    ignore_duplicates=True,
                )
                .execute()
            )

    async def list_subjects(self, reviewer_id: str) -> list[SubjectRef]:
        """Return the subjects authorizing a reviewer."""
        with store_errors("list authorizing subjects"):
            response = (
                await self.client.table("access_grants")
                .select("subject_id, subject_email")
                .eq("reviewer_id", reviewer_id)
                .execute()
            )
        subjects: dict[str, SubjectRef] = {}
        for row in response.data or []:
            subject_id = str(row["subject_id"])
            subjects[subject_id] = SubjectRef(
                id=subject_id, email=row.get("subject_email")
            )
        return list(subjects.values())

    async def subscribe_subjects(
        self,
        reviewer_id: str,
        on_snapshot: SnapshotHandler[SubjectRef],
        on_error: ErrorHandler,
    ) -> LiveSubscription:
        """Follow the subjects authorizing a reviewer."""
        query = SupabaseLiveQuery(
            client=self.client,
            table="access_grants",
            fetch=partial(self.list_subjects, reviewer_id),
            on_snapshot=on_snapshot,
            on_error=on_error,
            row_filter=f"reviewer_id=eq.{reviewer_id}",
        )
        await query.start()
        return query
