"""Live queries built on Supabase Realtime change notifications."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar
from uuid import uuid4

from supabase import AsyncClient

from scan_share.adapters.supabase_errors import store_errors
from scan_share.domain.errors import ScanShareError, SubscriptionError
from scan_share.services.live import ErrorHandler, SnapshotHandler

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FAILED_STATES = {"CHANNEL_ERROR", "TIMED_OUT", "CLOSED"}


@dataclass(eq=False)
class SupabaseLiveQuery(Generic[T]):
    """Re-runs a query whenever Realtime reports a change on its table.

    Refreshes run one at a time and bursts of change events are coalesced,
    so snapshots reach the handler in order.
    """

    client: AsyncClient
    table: str
    fetch: Callable[[], Awaitable[list[T]]]
    on_snapshot: SnapshotHandler[T]
    on_error: ErrorHandler
    row_filter: str | None = None
    _channel: object | None = field(default=None, init=False, repr=False)
    _active: bool = field(default=False, init=False, repr=False)
    _dirty: bool = field(default=False, init=False, repr=False)
    _refresh_task: asyncio.Task | None = field(default=None, init=False, repr=False)

    async def start(self) -> None:
        """Subscribe to changes and deliver the initial snapshot."""
        self._active = True
        channel = self.client.channel(f"{self.table}:{uuid4().hex}")
        options: dict[str, object] = {
            "event": "*",
            "schema": "public",
            "table": self.table,
            "callback": self._on_change,
        }
        if self.row_filter:
            options["filter"] = self.row_filter
        channel.on_postgres_changes(**options)
        self._channel = channel
        try:
            with store_errors(f"subscribe to {self.table}"):
                await channel.subscribe(self._on_status)
        except ScanShareError:
            await self.close()
            raise
        self._schedule_refresh()
        if self._refresh_task is not None:
            await asyncio.wait({self._refresh_task})

    async def close(self) -> None:
        """Stop delivering snapshots and remove the Realtime channel."""
        self._active = False
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
        channel, self._channel = self._channel, None
        if channel is not None:
            with store_errors(f"unsubscribe from {self.table}"):
                await self.client.remove_channel(channel)

    def _on_change(self, _payload: dict[str, object]) -> None:
        if self._active:
            self._schedule_refresh()

    def _on_status(self, status: object, error: Exception | None = None) -> None:
        state = getattr(status, "value", status)
        if not self._active:
            return
        if state == "SUBSCRIBED":
            self._schedule_refresh()
            return
        if state not in _FAILED_STATES:
            return
        logger.warning("Realtime channel for %s reported %s", self.table, state)
        self.on_error(
            SubscriptionError(f"Live query on {self.table} reported {state}: {error}")
        )

    def _schedule_refresh(self) -> None:
        self._dirty = True
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.get_running_loop().create_task(self._drain())
            self._refresh_task.add_done_callback(self._refresh_done)

    async def _drain(self) -> None:
        while self._dirty and self._active:
            self._dirty = False
            try:
                rows = await self.fetch()
            except ScanShareError as exc:
                if self._active:
                    self.on_error(exc)
                continue
            except Exception as exc:
                logger.exception("Refresh of live query on %s failed", self.table)
                if self._active:
                    self.on_error(
                        SubscriptionError(
                            f"Live query on {self.table} could not be refreshed: {exc}"
                        )
                    )
                continue
            if self._active:
                self.on_snapshot(rows)

    def _refresh_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        logger.error("Live query on %s stopped", self.table, exc_info=exc)
        if self._active:
            self.on_error(
                SubscriptionError(f"Live query on {self.table} stopped: {exc}")
            )
