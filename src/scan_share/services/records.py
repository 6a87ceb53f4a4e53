"""Read access to subjects' measurement records."""

from dataclasses import dataclass
from typing import Protocol

from scan_share.domain.records import Record
from scan_share.services.live import ErrorHandler, LiveSubscription, SnapshotHandler

DEFAULT_RECORD_LIMIT = 50


class RecordRepository(Protocol):
    """Persistence interface for measurement records."""

    async def list_records(self, owner_id: str, limit: int) -> list[Record]:
        """Return a subject's most recent records, newest first."""

    async def subscribe_records(
        self,
        owner_id: str,
        limit: int,
        on_snapshot: SnapshotHandler[Record],
        on_error: ErrorHandler,
    ) -> LiveSubscription:
        """Subscribe to a subject's most recent records, newest first."""


@dataclass
class RecordService:
    """Lists a subject's own records."""

    repository: RecordRepository
    limit: int = DEFAULT_RECORD_LIMIT

    async def list_records(self, owner_id: str) -> list[Record]:
        """Return the subject's most recent records, newest first."""
        records = await self.repository.list_records(owner_id, self.limit)
        return sorted(records, key=lambda record: record.created_at, reverse=True)
