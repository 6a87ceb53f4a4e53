"""Live merged view of records across every subject authorizing a reviewer.

The view holds one roster subscription (subjects whose grant set contains the
reviewer) and one record subscription per subject on that roster. Roster
changes are reconciled synchronously: removed subjects stop contributing at
once, added subjects are subscribed in the background. Every snapshot replaces
the subject's previous one and triggers a full re-merge.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import partial

from scan_share.domain.access import SubjectRef
from scan_share.domain.errors import (
    InvalidStateError,
    ScanShareError,
    SubscriptionError,
)
from scan_share.domain.models import CancellationToken
from scan_share.domain.records import Record
from scan_share.services.access import AuthorizationRepository
from scan_share.services.live import LiveSubscription
from scan_share.services.records import DEFAULT_RECORD_LIMIT, RecordRepository

logger = logging.getLogger(__name__)

ChangeListener = Callable[[list[Record]], None]
ErrorListener = Callable[[SubscriptionError], None]
WarningListener = Callable[[str, SubscriptionError], None]


@dataclass(frozen=True)
class RosterDiff:
    """Subjects to subscribe and unsubscribe after a roster change."""

    added: frozenset[str]
    removed: frozenset[str]

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


def diff_roster(current: Iterable[str], desired: Iterable[str]) -> RosterDiff:
    """Compute which subject ids were added and removed."""
    current_ids = frozenset(current)
    desired_ids = frozenset(desired)
    return RosterDiff(
        added=desired_ids - current_ids,
        removed=current_ids - desired_ids,
    )


def merge_snapshots(snapshots: Mapping[str, Sequence[Record]]) -> list[Record]:
    """Merge per-subject snapshots into one list, newest first.

    Records are deduplicated by id. Equal timestamps are ordered by owner id
    and then record id so the result does not depend on delivery order.
    """
    unique: dict[str, Record] = {}
    for subject_id in sorted(snapshots):
        for record in snapshots[subject_id]:
            unique.setdefault(record.id, record)
    merged = sorted(unique.values(), key=lambda record: (record.owner_id, record.id))
    merged.sort(key=lambda record: record.created_at, reverse=True)
    return merged


@dataclass
class _SubjectFeed:
    subject: SubjectRef
    token: CancellationToken = field(default_factory=CancellationToken)
    subscription: LiveSubscription | None = None
    snapshot: list[Record] = field(default_factory=list)
    error: SubscriptionError | None = None


@dataclass(eq=False)
class AggregatedView:
    """Live, merged records for one reviewer."""

    reviewer_id: str
    authorizations: AuthorizationRepository
    records_repository: RecordRepository
    limit: int = DEFAULT_RECORD_LIMIT
    on_change: ChangeListener | None = None
    on_error: ErrorListener | None = None
    on_warning: WarningListener | None = None
    error: SubscriptionError | None = field(default=None, init=False)
    _token: CancellationToken = field(
        default_factory=CancellationToken, init=False, repr=False
    )
    _roster: LiveSubscription | None = field(default=None, init=False, repr=False)
    _feeds: dict[str, _SubjectFeed] = field(
        default_factory=dict, init=False, repr=False
    )
    _records: list[Record] = field(default_factory=list, init=False, repr=False)
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    @property
    def records(self) -> list[Record]:
        """Current merged records, newest first."""
        return list(self._records)

    @property
    def subjects(self) -> dict[str, SubjectRef]:
        """Subjects currently on the roster, by id."""
        return {subject_id: feed.subject for subject_id, feed in self._feeds.items()}

    @property
    def warnings(self) -> dict[str, SubscriptionError]:
        """Per-subject stream failures that have not recovered yet."""
        return {
            subject_id: feed.error
            for subject_id, feed in self._feeds.items()
            if feed.error is not None
        }

    @property
    def closed(self) -> bool:
        return self._token.cancelled

    async def open(self) -> None:
        """Start the roster subscription."""
        if self.closed:
            raise InvalidStateError("Aggregated view is already closed")
        try:
            roster = await self.authorizations.subscribe_subjects(
                self.reviewer_id, self._on_roster, self._on_roster_error
            )
        except ScanShareError as exc:
            self._abort(exc)
            await self.close()
            raise self.error from exc
        if self.closed:
            await _close_quietly(roster)
            return
        self._roster = roster
        logger.info("Opened aggregated view for reviewer %s", self.reviewer_id)

    async def retry_subject(self, subject_id: str) -> None:
        """Reopen the record stream for a subject on the roster."""
        current = self._feeds.get(subject_id)
        if current is None:
            raise InvalidStateError(f"Subject {subject_id} is not on the roster")
        current.token.cancel()
        replacement = _SubjectFeed(
            subject=current.subject,
            snapshot=current.snapshot,
            error=current.error,
        )
        self._feeds[subject_id] = replacement
        if current.subscription is not None:
            await _close_quietly(current.subscription)
        await self._open_feed(replacement)

    async def close(self) -> None:
        """Tear down every subscription; safe to call more than once."""
        subscriptions = self._cancel()
        for subscription in subscriptions:
            await _close_quietly(subscription)
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _cancel(self) -> list[LiveSubscription]:
        self._token.cancel()
        feeds = list(self._feeds.values())
        self._feeds.clear()
        self._records = []
        subscriptions = []
        for feed in feeds:
            feed.token.cancel()
            if feed.subscription is not None:
                subscriptions.append(feed.subscription)
        if self._roster is not None:
            subscriptions.append(self._roster)
            self._roster = None
        return subscriptions

    def _on_roster(self, subjects: list[SubjectRef]) -> None:
        if self.closed:
            return
        desired = {subject.id: subject for subject in subjects}
        diff = diff_roster(self._feeds.keys(), desired.keys())
        for subject_id in diff.removed:
            feed = self._feeds.pop(subject_id)
            feed.token.cancel()
            if feed.subscription is not None:
                self._spawn(_close_quietly(feed.subscription))
        for subject_id in sorted(diff.added):
            feed = _SubjectFeed(subject=desired[subject_id])
            self._feeds[subject_id] = feed
            self._spawn(self._open_feed(feed))
        for subject_id, subject in desired.items():
            self._feeds[subject_id].subject = subject
        if not diff.is_empty:
            logger.info(
                "Reviewer %s roster changed: +%d -%d",
                self.reviewer_id,
                len(diff.added),
                len(diff.removed),
            )
        self._remerge()

    def _on_roster_error(self, exc: Exception) -> None:
        if self.closed:
            return
        subscriptions = self._cancel()
        self._abort(exc)
        for subscription in subscriptions:
            self._spawn(_close_quietly(subscription))

    def _abort(self, exc: Exception) -> None:
        self.error = SubscriptionError(f"Authorized subjects subscription failed: {exc}")
        logger.error("Aggregation aborted for reviewer %s: %s", self.reviewer_id, exc)
        if self.on_error is not None:
            self.on_error(self.error)

    async def _open_feed(self, feed: _SubjectFeed) -> None:
        subject_id = feed.subject.id
        try:
            subscription = await self.records_repository.subscribe_records(
                subject_id,
                self.limit,
                partial(self._on_records, feed),
                partial(self._on_feed_error, feed),
            )
        except ScanShareError as exc:
            self._on_feed_error(feed, exc)
            return
        if feed.token.cancelled:
            await _close_quietly(subscription)
            return
        feed.subscription = subscription

    def _on_records(self, feed: _SubjectFeed, records: list[Record]) -> None:
        if feed.token.cancelled or self.closed:
            return
        feed.snapshot = list(records)
        feed.error = None
        self._remerge()

    def _on_feed_error(self, feed: _SubjectFeed, exc: Exception) -> None:
        if feed.token.cancelled or self.closed:
            return
        subject_id = feed.subject.id
        if isinstance(exc, SubscriptionError):
            error = exc
        else:
            error = SubscriptionError(
                f"Record stream for subject {subject_id} failed: {exc}",
                subject_id=subject_id,
            )
        feed.error = error
        logger.warning("Record stream for subject %s failed: %s", subject_id, exc)
        if self.on_warning is not None:
            self.on_warning(subject_id, error)

    def _remerge(self) -> None:
        self._records = merge_snapshots(
            {subject_id: feed.snapshot for subject_id, feed in self._feeds.items()}
        )
        if self.on_change is not None:
            self.on_change(list(self._records))

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Aggregated view task failed for reviewer %s",
                self.reviewer_id,
                exc_info=exc,
            )


@dataclass
class AggregatorService:
    """Opens and closes aggregated views for reviewers."""

    authorizations: AuthorizationRepository
    records: RecordRepository
    limit: int = DEFAULT_RECORD_LIMIT

    async def open_view(
        self,
        reviewer_id: str,
        on_change: ChangeListener | None = None,
        on_error: ErrorListener | None = None,
        on_warning: WarningListener | None = None,
    ) -> AggregatedView:
        """Open a live merged view for a reviewer."""
        view = AggregatedView(
            reviewer_id=reviewer_id,
            authorizations=self.authorizations,
            records_repository=self.records,
            limit=self.limit,
            on_change=on_change,
            on_error=on_error,
            on_warning=on_warning,
        )
        await view.open()
        return view

    async def close_view(self, view: AggregatedView) -> None:
        """Close a view opened by this service."""
        await view.close()


async def _close_quietly(subscription: LiveSubscription) -> None:
    try:
        await subscription.close()
    except ScanShareError:
        logger.warning("Failed to release live subscription", exc_info=True)
