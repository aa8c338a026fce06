"""
Popup overlay storage.

Expiry is evaluated lazily: a temporary popup past its ``expiresAt`` stays
in the table but is excluded from ``list_active``. There is no reaper.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from hearth.datetime_utils import to_iso
from hearth.db_models import Popup
from hearth.models import PopupCreate, PopupMode, PopupUpdate
from hearth.store import Store

# Fields a write may change; createdAt is fixed on insert
_MUTABLE_FIELDS = {
    "message": "message",
    "position": "position",
    "mode": "mode",
    "priority": "priority",
    "durationSeconds": "duration_seconds",
    "visible": "visible",
    "expiresAt": "expires_at",
}


def compute_expires_at(
    mode: str, duration_seconds: Optional[int], shown_at: datetime
) -> Optional[str]:
    """Expiry for a popup shown at ``shown_at``; manual popups never expire."""
    if mode != PopupMode.TEMPORARY.value or not duration_seconds:
        return None
    return to_iso(shown_at + timedelta(seconds=duration_seconds))


def build_popup(data: PopupCreate, now: datetime) -> Dict[str, Any]:
    """A new, visible popup from a create request."""
    stamp = to_iso(now)
    mode = data.mode.value
    return {
        "id": data.id or str(uuid.uuid4()),
        "message": data.message,
        "position": data.position.value,
        "mode": mode,
        "priority": data.priority.value,
        "durationSeconds": data.durationSeconds,
        "visible": True,
        "createdAt": stamp,
        "updatedAt": stamp,
        "expiresAt": compute_expires_at(mode, data.durationSeconds, now),
    }


def apply_popup_update(
    existing: Dict[str, Any], changes: PopupUpdate, now: datetime
) -> Dict[str, Any]:
    """
    Apply an update request to a stored popup.

    A temporary popup's timer restarts from ``now`` whenever its mode,
    duration or visibility is written, so re-showing it gives it a full
    duration again.
    """
    sent = changes.model_dump(mode="json", exclude_unset=True)
    popup = dict(existing)
    popup.update(sent)
    if {"mode", "durationSeconds", "visible"} & sent.keys():
        popup["expiresAt"] = compute_expires_at(
            popup["mode"], popup.get("durationSeconds"), now
        )
    popup["updatedAt"] = to_iso(now)
    return popup


class PopupStore:
    """Popup rows layered on the main store's database."""

    def __init__(self, store: Store):
        self._store = store

    def list_active(self, now: datetime) -> List[Dict[str, Any]]:
        """Visible, unexpired popups, oldest first."""
        now_iso = to_iso(now)
        with self._store.session() as db:
            rows = (
                db.query(Popup)
                .filter(Popup.visible.is_(True))
                .filter((Popup.expires_at.is_(None)) | (Popup.expires_at > now_iso))
                .order_by(Popup.created_at.asc())
                .all()
            )
            return [row.to_dict() for row in rows]

    def list_all(self) -> List[Dict[str, Any]]:
        with self._store.session() as db:
            rows = db.query(Popup).order_by(Popup.created_at.asc()).all()
            return [row.to_dict() for row in rows]

    def get(self, popup_id: str) -> Optional[Dict[str, Any]]:
        with self._store.session() as db:
            row = db.query(Popup).filter(Popup.id == popup_id).first()
            return row.to_dict() if row else None

    def upsert(self, popup: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        """
        Insert ``popup`` if its id is new, otherwise update its mutable fields.

        ``updatedAt`` is stamped with ``now``; ``createdAt`` of an existing
        row is never changed.
        """
        stamp = to_iso(now)
        with self._store.session() as db:
            row = db.query(Popup).filter(Popup.id == popup["id"]).first()
            if row is None:
                row = Popup(
                    id=popup["id"],
                    created_at=popup.get("createdAt") or stamp,
                    visible=True,
                )
                db.add(row)
            for field, column in _MUTABLE_FIELDS.items():
                if field in popup:
                    setattr(row, column, popup[field])
            row.updated_at = stamp
            db.commit()
            db.refresh(row)
            return row.to_dict()

    def clear_all(self, now: datetime) -> int:
        """Hide every popup in one statement; rows are kept as history."""
        with self._store.session() as db:
            count = db.query(Popup).update(
                {Popup.visible: False, Popup.updated_at: to_iso(now)},
                synchronize_session=False,
            )
            db.commit()
            return count
