"""
Public routes - Display devices on the trusted LAN.

Nothing here requires a token: the display reads state, shows the pairing
code and subscribes to pushes.
"""

import logging
import socket
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import FileResponse, StreamingResponse

from hearth.context import HearthContext
from hearth.dependencies import get_context
from hearth.models import PopupListResponse, StateResponse
from hearth.photos import (
    LOCAL_PHOTOS_DIR_KEY,
    PhotoNotFoundError,
    content_type_for,
    resolve_local_photo_path,
)
from hearth.realtime import DeviceMismatchError

router = APIRouter(prefix="/api", tags=["Display"])
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def detect_lan_ip() -> Optional[str]:
    """Address of the interface used for outbound traffic, if any."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect sends nothing; it only selects a route
        sock.connect(("10.255.255.255", 1))
        address = sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()
    if address.startswith("127.") or address == "0.0.0.0":
        return None
    return address


@router.get("/state", response_model=StateResponse)
async def get_state(ctx: HearthContext = Depends(get_context)) -> StateResponse:
    """Current state document (seeded if missing) and the display device id."""
    return StateResponse(state=ctx.read_state(), deviceId=ctx.device_id)


@router.get("/pairing")
async def get_pairing_code(ctx: HearthContext = Depends(get_context)) -> dict:
    """Pairing code for the display to show."""
    return {"code": ctx.pairing_code or ""}


@router.get("/network")
async def get_network(ctx: HearthContext = Depends(get_context)) -> dict:
    return {"lanIp": ctx.config.lan_ip or detect_lan_ip()}


@router.get("/popups", response_model=PopupListResponse)
async def get_active_popups(
    ctx: HearthContext = Depends(get_context),
) -> PopupListResponse:
    """Visible, unexpired popups, oldest first."""
    return PopupListResponse(popups=ctx.active_popups())


@router.get("/display/{device_id}/events")
async def display_events(
    device_id: str,
    request: Request,
    ctx: HearthContext = Depends(get_context),
) -> StreamingResponse:
    """
    Server-Sent Events stream of state and popup pushes.

    A display holding a stale device id gets 404 and should refetch
    ``/api/state``.
    """
    try:
        connection = ctx.subscribe_display(device_id)
    except DeviceMismatchError:
        raise HTTPException(status_code=404, detail="Invalid device")

    return StreamingResponse(
        ctx.hub.stream(connection, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/photos/local")
async def get_local_photo(
    path: Optional[str] = Query(default=None),
    ctx: HearthContext = Depends(get_context),
) -> FileResponse:
    """Serve one image from the configured local photo directory."""
    if not path:
        raise HTTPException(status_code=400, detail="Missing path")

    directory = ctx.store.get(LOCAL_PHOTOS_DIR_KEY)
    if not directory:
        raise HTTPException(status_code=400, detail="Local photos not configured")

    try:
        absolute = resolve_local_photo_path(directory, path)
    except PhotoNotFoundError:
        raise HTTPException(status_code=404, detail="Photo not found")

    return FileResponse(
        absolute,
        media_type=content_type_for(absolute),
        headers={"Cache-Control": "public, max-age=300"},
    )
