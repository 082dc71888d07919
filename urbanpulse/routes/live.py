"""WebSocket endpoint streaming live report snapshots."""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from ..auth import viewer_from_token
from ..dependencies import ReportServices, get_services
from ..errors import ReportError
from ..live_views import LiveViewRegistry, ViewHandle, WebSocketEvent, pump_snapshots

logger = logging.getLogger("urbanpulse.routes.live")

router = APIRouter()


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_text(WebSocketEvent(event_type="error", data={"detail": message}).model_dump_json())


async def _handle_messages(websocket: WebSocket, registry: LiveViewRegistry, handle: ViewHandle) -> None:
    while True:
        data = await websocket.receive_text()
        if data == "ping":
            await websocket.send_text("pong")
            continue
        try:
            message = json.loads(data)
        except ValueError:
            await _send_error(websocket, "Unrecognized message")
            continue
        if not isinstance(message, dict) or message.get("action") != "authorize":
            await _send_error(websocket, "Unrecognized message")
            continue
        try:
            new_viewer = viewer_from_token(str(message.get("token") or ""))
        except HTTPException:
            await _send_error(websocket, "Invalid authentication token")
            continue
        registry.reattach(handle, new_viewer.role, new_viewer.viewer_id)


@router.websocket("/ws/reports")
async def reports_socket(
    websocket: WebSocket,
    token: Optional[str] = None,
    services: ReportServices = Depends(get_services),
):
    """
    Live report feed.

    Requires a session JWT as the ``token`` query parameter. Pushes a full
    snapshot on connect and after every relevant change. Clients may send
    ``ping`` or ``{"action": "authorize", "token": ...}`` to switch role.
    If the snapshot stream fails the client receives an ``error`` event and
    the socket is closed with 1011.
    """
    if not token:
        await websocket.close(code=4001, reason="Missing authentication token")
        return
    try:
        viewer = viewer_from_token(token)
    except HTTPException:
        await websocket.close(code=4001, reason="Invalid authentication token")
        return

    await websocket.accept()
    registry = services.live_views
    async with registry.session(viewer.role, viewer.viewer_id) as handle:
        pump = asyncio.create_task(pump_snapshots(handle, websocket.send_text))
        receiver = asyncio.create_task(_handle_messages(websocket, registry, handle))
        try:
            done, _ = await asyncio.wait({pump, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if receiver in done:
                exc = receiver.exception()
                if isinstance(exc, WebSocketDisconnect):
                    logger.info("WebSocket disconnected: viewer_id=%s", handle.viewer_id)
                elif exc is not None:
                    raise exc
            else:
                exc = pump.exception()
                if exc is None:
                    # View detached by registry shutdown.
                    await websocket.close(code=status.WS_1001_GOING_AWAY)
                elif isinstance(exc, ReportError):
                    logger.error("Snapshot stream failed for viewer_id=%s: %s", handle.viewer_id, exc, exc_info=exc)
                    await _send_error(websocket, exc.message)
                    await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
                else:
                    # Sends fail once the client is gone.
                    logger.warning("Snapshot delivery stopped for viewer_id=%s: %s", handle.viewer_id, exc)
        finally:
            for task in (pump, receiver):
                task.cancel()
            await asyncio.gather(pump, receiver, return_exceptions=True)
