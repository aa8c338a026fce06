"""
Popup routes - Overlay messages managed from the control app.

Each change is pushed to displays as a ``popup`` event.
"""

from fastapi import APIRouter, Depends, HTTPException

from hearth.auth import TokenData
from hearth.context import HearthContext, PopupNotFoundError
from hearth.dependencies import get_context, require_control_token
from hearth.models import Popup, PopupCreate, PopupListResponse, PopupUpdate

router = APIRouter(prefix="/api/control/popups", tags=["Popups"])


@router.get("", response_model=PopupListResponse)
async def list_popups(
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> PopupListResponse:
    """All popups, including hidden and expired ones."""
    return PopupListResponse(popups=ctx.popups.list_all())


@router.post("", response_model=Popup)
async def create_popup(
    body: PopupCreate,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> Popup:
    """
    Show a popup.

    Posting an existing id replaces its content and shows it again; its
    creation time is kept.
    """
    return Popup(**ctx.create_popup(body))


@router.post("/clear")
async def clear_popups(
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> dict:
    """Hide every popup. Rows are kept."""
    ctx.clear_popups()
    return {"ok": True}


@router.post("/{popup_id}", response_model=Popup)
async def update_popup(
    popup_id: str,
    body: PopupUpdate,
    ctx: HearthContext = Depends(get_context),
    _: TokenData = Depends(require_control_token),
) -> Popup:
    try:
        return Popup(**ctx.update_popup(popup_id, body))
    except PopupNotFoundError:
        raise HTTPException(status_code=404, detail=f"Popup '{popup_id}' not found")
