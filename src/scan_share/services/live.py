"""Live subscription interfaces shared by the services."""

from collections.abc import Callable
from typing import Protocol, TypeVar

T = TypeVar("T")

SnapshotHandler = Callable[[list[T]], None]
ErrorHandler = Callable[[Exception], None]


class LiveSubscription(Protocol):
    """Handle for an open live query.

    Snapshot and error handlers are plain callables invoked on the event loop.
    Each delivered snapshot is the complete current result of the query.
    """

    async def close(self) -> None:
        """Stop delivering callbacks and release the subscription."""
