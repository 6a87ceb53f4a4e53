"""Supabase-backed measurement records."""

from dataclasses import dataclass
from datetime import datetime
from functools import partial

from supabase import AsyncClient

from scan_share.adapters.supabase_errors import store_errors
from scan_share.adapters.supabase_live_query import SupabaseLiveQuery
from scan_share.domain.records import Record
from scan_share.services.live import ErrorHandler, LiveSubscription, SnapshotHandler
from scan_share.services.records import RecordRepository


@dataclass
class SupabaseRecordRepository(RecordRepository):
    """Reads the records table."""

    client: AsyncClient

    async def list_records(self, owner_id: str, limit: int) -> list[Record]:
        """Return a subject's most recent records."""
        with store_errors("list records"):
            response = (
                await self.client.table("records")
                .select(
                    "id, owner_id, created_at, measurements, "
                    "annotated_image_url, scale_mm_per_px"
                )
                .eq("owner_id", owner_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        return [_to_record(row) for row in response.data or []]

    async def subscribe_records(
        self,
        owner_id: str,
        limit: int,
        on_snapshot: SnapshotHandler[Record],
        on_error: ErrorHandler,
    ) -> LiveSubscription:
        """Follow a subject's most recent records."""
        query = SupabaseLiveQuery(
            client=self.client,
            table="records",
            fetch=partial(self.list_records, owner_id, limit),
            on_snapshot=on_snapshot,
            on_error=on_error,
            row_filter=f"owner_id=eq.{owner_id}",
        )
        await query.start()
        return query


def _to_record(row: dict[str, object]) -> Record:
    measurements = row.get("measurements") or {}
    scale = row.get("scale_mm_per_px")
    return Record(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        created_at=datetime.fromisoformat(str(row["created_at"])),
        measurements={
            str(name): float(value)
            for name, value in dict(measurements).items()
            if isinstance(value, int | float)
        },
        annotated_image_url=row.get("annotated_image_url"),
        scale_mm_per_px=float(scale) if isinstance(scale, int | float) else None,
    )
