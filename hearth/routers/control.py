"""
Control routes - Phone/tablet control app.

Pairing is the only open endpoint here; everything else requires the
Bearer token it returns. State writes go through the context, so they are
serialized, persisted and pushed to displays before the response returns.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from hearth.auth import TokenData
from hearth.context import HearthContext
from hearth.dependencies import (
    get_context,
    require_control_token,
    require_control_token_or_query,
)
from hearth.models import (
    CalendarSettings,
    LayoutUpdateRequest,
    LocalPhotoSettings,
    PairingRequest,
    PairingResponse,
    StateUpdateRequest,
    ToggleModuleRequest,
    WeatherSettings,
)
from hearth.photos import (
    LOCAL_PHOTOS_DIR_KEY,
    PhotoDirectoryError,
    local_photos_partial,
    scan_local_photos,
)
from hearth.reconciler import merge_state
from hearth.store import StateMissingError
from hearth.sync import UpstreamError
from hearth.sync.calendar import ICS_URL_KEY
from hearth.sync.scheduler import SyncInProgressError
from hearth.sync.weather import WEATHER_QUERY_KEY

router = APIRouter(prefix="/api/control", tags=["Control"])
logger = logging.getLogger(__name__)


def _write_state(
    ctx: HearthContext, updater: Callable[[Dict[str, Any]], Dict[str, Any]]
) -> Dict[str, Any]:
    try:
        return ctx.mutate_state(updater)
    except StateMissingError:
        raise HTTPException(status_code=500, detail="State missing")


def _update_state(ctx: HearthContext, partial: Dict[str, Any]) -> Dict[str, Any]:
    return _write_state(ctx, lambda current: merge_state(current, partial))


async def _sync_now(request: Request, name: str) -> Dict[str, Any]:
    """Run a named background sync immediately and report the outcome."""
    sync = request.app.state.syncs[name]
    try:
        await sync.run_once(raise_errors=True)
    except SyncInProgressError:
        return {"ok": True, "skipped": True}
    except UpstreamError as e:
        logger.warning(f"Manual {name} sync failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except StateMissingError:
        raise HTTPException(status_code=500, detail="State missing")
    return {"ok": True}


# Pairing


@router.post("/pair", response_model=PairingResponse)
async def pair(
    body: PairingRequest,
    ctx: HearthContext = Depends(get_context),
) -> PairingResponse:
    """Exchange the pairing code shown on the display for a control token."""
    token = ctx.pair(body.code)
    if token is None:
        logger.info("Rejected pairing attempt with wrong code")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid code",
            headers={"WWW-Authenticate": "Bearer"},
        )
    logger.info("Control client paired")
    return PairingResponse(token=token)


@router.get("/session")
async def check_session(
    _: TokenData = Depends(require_control_token_or_query),
) -> dict:
    """Lets a client check whether its stored token is still valid."""
    return {"ok": True}


# State


@router.post("/state")
async def update_state(
    body: StateUpdateRequest,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> Dict[str, Any]:
    """Merge a partial state update; returns the full new state."""
    return _update_state(ctx, body.state.to_partial())


@router.post("/modules/toggle")
async def toggle_module(
    body: ToggleModuleRequest,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> Dict[str, Any]:
    return _update_state(ctx, {"modules": {body.module: body.enabled}})


@router.post("/layout")
async def update_layout(
    body: LayoutUpdateRequest,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> Dict[str, Any]:
    return _update_state(ctx, {"layout": body.layout.model_dump(mode="json")})


# Calendar


@router.get("/calendar/settings")
async def get_calendar_settings(
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> dict:
    return {"icsUrl": ctx.store.get(ICS_URL_KEY) or ""}


@router.post("/calendar/settings")
async def update_calendar_settings(
    body: CalendarSettings,
    request: Request,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> dict:
    """Store the ICS feed URL and optionally sync it right away."""
    url = (body.icsUrl or "").strip()
    if url:
        ctx.store.set(ICS_URL_KEY, url)
    if body.syncNow and url:
        return await _sync_now(request, "calendar")
    return {"ok": True}


# Weather


@router.get("/weather/settings")
async def get_weather_settings(
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> dict:
    return {"query": ctx.store.get(WEATHER_QUERY_KEY) or ""}


@router.post("/weather/settings")
async def update_weather_settings(
    body: WeatherSettings,
    request: Request,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> dict:
    """Store the weather location query and optionally sync it right away."""
    query = (body.query or "").strip()
    if query:
        ctx.store.set(WEATHER_QUERY_KEY, query)
    if body.syncNow and query:
        return await _sync_now(request, "weather")
    return {"ok": True}


# Local photos


@router.get("/photos/local/settings")
async def get_local_photo_settings(
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> dict:
    return {"directory": ctx.store.get(LOCAL_PHOTOS_DIR_KEY) or ""}


@router.post("/photos/local/settings")
async def update_local_photo_settings(
    body: LocalPhotoSettings,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> dict:
    ctx.store.set(LOCAL_PHOTOS_DIR_KEY, (body.directory or "").strip())
    return {"ok": True}


@router.post("/photos/local/scan")
async def scan_local_photo_directory(
    body: Optional[LocalPhotoSettings] = None,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> dict:
    """
    Rescan the local photo directory and publish the images found.

    Uses the directory in the body when given (and stores it), otherwise
    the stored one.
    """
    directory = ((body.directory if body else None) or "").strip()
    directory = directory or ctx.store.get(LOCAL_PHOTOS_DIR_KEY) or ""
    if not directory:
        raise HTTPException(status_code=400, detail="Directory required")
    ctx.store.set(LOCAL_PHOTOS_DIR_KEY, directory)

    try:
        urls = await run_in_threadpool(scan_local_photos, directory)
    except PhotoDirectoryError as e:
        raise HTTPException(status_code=400, detail=str(e))

    _write_state(
        ctx, lambda current: merge_state(current, local_photos_partial(current, urls))
    )
    return {"ok": True, "count": len(urls)}
