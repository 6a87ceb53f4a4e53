"""WebSocket streams for live views."""

import asyncio
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from scan_share.api.schemas import AccessRequestOut, RecordOut
from scan_share.domain.access import AccessGrantRequest
from scan_share.domain.errors import AuthenticationError, ScanShareError
from scan_share.domain.records import Record
from scan_share.services.auth import AuthContext

if TYPE_CHECKING:
    from scan_share.containers import AppContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["live"])


@router.websocket("/reviewer/records")
async def reviewer_records(websocket: WebSocket, access_token: str) -> None:
    """Stream the caller's aggregated records view."""
    context = await _accept(websocket, access_token)
    if context is None:
        return
    frames: asyncio.Queue[dict[str, object]] = asyncio.Queue()

    def on_change(records: list[Record]) -> None:
        frames.put_nowait({"type": "records", "records": _records_payload(records)})

    def on_error(exc: ScanShareError) -> None:
        frames.put_nowait({"type": "error", "detail": str(exc)})

    def on_warning(subject_id: str, exc: ScanShareError) -> None:
        frames.put_nowait(
            {"type": "warning", "subject_id": subject_id, "detail": str(exc)}
        )

    try:
        await context.resolve_role()
        await context.open_aggregated_view(
            on_change=on_change, on_error=on_error, on_warning=on_warning
        )
    except ScanShareError as exc:
        await _fail(websocket, context, exc)
        return
    await _stream(websocket, context, frames)


@router.websocket("/requests/incoming")
async def incoming_requests(websocket: WebSocket, access_token: str) -> None:
    """Stream the access requests addressed to the caller."""
    context = await _accept(websocket, access_token)
    if context is None:
        return
    frames: asyncio.Queue[dict[str, object]] = asyncio.Queue()

    def on_snapshot(requests: list[AccessGrantRequest]) -> None:
        frames.put_nowait(
            {
                "type": "requests",
                "requests": [
                    AccessRequestOut.model_validate(item).model_dump(mode="json")
                    for item in requests
                ],
            }
        )

    def on_error(exc: Exception) -> None:
        frames.put_nowait({"type": "error", "detail": str(exc)})

    try:
        await context.resolve_role()
        await context.subscribe_incoming_requests(on_snapshot, on_error)
    except ScanShareError as exc:
        await _fail(websocket, context, exc)
        return
    await _stream(websocket, context, frames)


async def _accept(websocket: WebSocket, access_token: str) -> AuthContext | None:
    container: AppContainer = websocket.app.state.container
    try:
        identity = await container.identity_provider.authenticate(access_token)
    except ScanShareError as exc:
        logger.warning("Rejected live stream: %s", exc)
        code = (
            status.WS_1008_POLICY_VIOLATION
            if isinstance(exc, AuthenticationError)
            else status.WS_1011_INTERNAL_ERROR
        )
        await websocket.close(code=code)
        return None
    await websocket.accept()
    context = container.new_auth_context()
    context.sign_in(identity)
    return context


async def _fail(websocket: WebSocket, context: AuthContext, exc: Exception) -> None:
    logger.warning("Live stream could not start: %s", exc)
    await context.sign_out()
    await websocket.send_json({"type": "error", "detail": str(exc)})
    await websocket.close(code=status.WS_1011_INTERNAL_ERROR)


async def _stream(
    websocket: WebSocket,
    context: AuthContext,
    frames: asyncio.Queue[dict[str, object]],
) -> None:
    sender = asyncio.create_task(_send_frames(websocket, frames))
    receiver = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait(
            {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        sender.cancel()
        receiver.cancel()
        await context.sign_out()
    if sender in done and not sender.cancelled() and sender.exception() is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)


async def _send_frames(
    websocket: WebSocket, frames: asyncio.Queue[dict[str, object]]
) -> None:
    while True:
        frame = await frames.get()
        await websocket.send_json(frame)
        if frame["type"] == "error":
            return


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


def _records_payload(records: list[Record]) -> list[dict[str, object]]:
    return [
        RecordOut.model_validate(record).model_dump(mode="json") for record in records
    ]
