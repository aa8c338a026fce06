"""
Persistent settings and state document storage.

Settings are opaque strings; callers serialize and deserialize their own
values. The state document is stored whole, as JSON, in a single row.
Every write commits its own transaction.
"""

import json
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from hearth.database import session_scope
from hearth.db_models import STATE_ROW_ID, Setting, StateDocument

# Setting keys
PAIRING_CODE_KEY = "pairingCode"
DEVICE_ID_KEY = "deviceId"
TOKEN_SECRET_KEY = "tokenSecret"


class StateMissingError(RuntimeError):
    """No state document exists where one is required."""


class Store:
    """Key/value settings plus the singleton state document."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def session(self):
        """Context manager yielding a short-lived session."""
        return session_scope(self._session_factory)

    # Settings

    def get(self, key: str) -> Optional[str]:
        with self.session() as db:
            row = db.query(Setting).filter(Setting.key == key).first()
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        """Insert or overwrite a setting."""
        with self.session() as db:
            _upsert_setting(db, key, value)
            db.commit()

    def get_or_create(self, key: str, factory: Callable[[], str]) -> str:
        """Return the stored value, generating and persisting it if absent."""
        with self.session() as db:
            row = db.query(Setting).filter(Setting.key == key).first()
            if row is not None and row.value:
                return row.value
            value = factory()
            _upsert_setting(db, key, value)
            db.commit()
            return value

    # State document

    def load_state(self) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            row = (
                db.query(StateDocument)
                .filter(StateDocument.id == STATE_ROW_ID)
                .first()
            )
            if row is None:
                return None
            return json.loads(row.json)

    def save_state(self, state: Dict[str, Any]) -> None:
        """Insert or overwrite the state row."""
        payload = json.dumps(state, ensure_ascii=False)
        with self.session() as db:
            row = (
                db.query(StateDocument)
                .filter(StateDocument.id == STATE_ROW_ID)
                .first()
            )
            if row is None:
                db.add(StateDocument(id=STATE_ROW_ID, json=payload))
            else:
                row.json = payload
            db.commit()


def _upsert_setting(db: Session, key: str, value: str) -> None:
    row = db.query(Setting).filter(Setting.key == key).first()
    if row is None:
        db.add(Setting(key=key, value=value))
    else:
        row.value = value
