"""
Application context.

One ``HearthContext`` is created at boot and handed to every route and
background job. It owns the store, the push hub, the device identity and
the secrets, so nothing in the application relies on module globals.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from hearth import auth
from hearth.config import Config
from hearth.database import create_db_engine, create_session_factory, init_db
from hearth.datetime_utils import utcnow
from hearth.models import PopupCreate, PopupUpdate
from hearth.popups import PopupStore, apply_popup_update, build_popup
from hearth.realtime import SSEConnection, SSEHub
from hearth.reconciler import create_default_state, ensure_defaults, merge_state
from hearth.store import (
    DEVICE_ID_KEY,
    PAIRING_CODE_KEY,
    TOKEN_SECRET_KEY,
    StateMissingError,
    Store,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[Dict[str, Any]], None]
EventListener = Callable[[str, Dict[str, Any]], None]


class PopupNotFoundError(LookupError):
    """No popup with the requested id."""


class HearthContext:
    """Owned state of a running Hearth server."""

    def __init__(
        self,
        store: Store,
        hub: SSEHub,
        device_id: str,
        pairing_code: str,
        token_secret: str,
        config: Optional[Config] = None,
        engine: Any = None,
    ):
        self.store = store
        self.popups = PopupStore(store)
        self.hub = hub
        self.device_id = device_id
        self.pairing_code = pairing_code
        self.token_secret = token_secret
        self.config = config or Config()
        self.engine = engine

        # Guards load -> merge -> save of the state document
        self._state_lock = threading.RLock()
        self._state_listeners: List[StateListener] = []
        self._event_listeners: List[EventListener] = []

        # The push hub observes state changes and popup events
        self.add_state_listener(hub.broadcast_all)
        self.add_event_listener(
            lambda event, data: hub.broadcast_event(self.device_id, event, data)
        )

    @classmethod
    def boot(cls, config: Config) -> "HearthContext":
        """
        Open storage and load or generate identity and secrets.

        Raises:
            StorageError: The database cannot be opened or initialized.
        """
        engine = create_db_engine(config.database_url, echo=config.debug)
        init_db(engine)
        store = Store(create_session_factory(engine))

        pairing_code = store.get_or_create(PAIRING_CODE_KEY, auth.generate_pairing_code)
        device_id = store.get_or_create(DEVICE_ID_KEY, auth.generate_device_id)
        token_secret = store.get_or_create(
            TOKEN_SECRET_KEY,
            lambda: config.token_secret or auth.generate_token_secret(),
        )

        if store.load_state() is None:
            store.save_state(create_default_state())
            logger.info("Seeded default dashboard state")

        logger.info(f"Hearth pairing code: {pairing_code}")
        logger.info(f"Hearth display deviceId: {device_id}")

        return cls(
            store=store,
            hub=SSEHub(keepalive_seconds=config.keepalive_seconds),
            device_id=device_id,
            pairing_code=pairing_code,
            token_secret=token_secret,
            config=config,
            engine=engine,
        )

    def close(self) -> None:
        self.hub.close_all()
        if self.engine is not None:
            self.engine.dispose()

    # Observers

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def add_event_listener(self, listener: EventListener) -> None:
        self._event_listeners.append(listener)

    def _notify_state(self, state: Dict[str, Any]) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")

    def _notify_event(self, event: str, data: Dict[str, Any]) -> None:
        for listener in list(self._event_listeners):
            try:
                listener(event, data)
            except Exception as e:
                logger.error(f"Event listener failed for {event}: {e}")

    # State document

    def read_state(self) -> Dict[str, Any]:
        """
        Current state with defaults filled in.

        Seeds the document if none exists and persists the normalized form
        when it differs from what is stored.
        """
        with self._state_lock:
            stored = self.store.load_state()
            if stored is None:
                seeded = create_default_state()
                self.store.save_state(seeded)
                return seeded
            normalized = ensure_defaults(stored)
            if normalized != stored:
                self.store.save_state(normalized)
            return normalized

    def mutate_state(
        self, updater: Callable[[Dict[str, Any]], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Read-modify-write the state document, then notify observers.

        Raises:
            StateMissingError: No document is stored.
        """
        with self._state_lock:
            stored = self.store.load_state()
            if stored is None:
                raise StateMissingError("State missing")
            nxt = updater(ensure_defaults(stored))
            self.store.save_state(nxt)
        self._notify_state(nxt)
        return nxt

    def update_state(
        self, partial: Dict[str, Any], now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Merge a validated partial update into the state document."""
        return self.mutate_state(lambda current: merge_state(current, partial, now))

    # Auth

    def pair(self, code: str) -> Optional[str]:
        """Exchange the pairing code for a token; None if the code is wrong."""
        if not auth.pairing_code_matches(self.pairing_code, code):
            return None
        return auth.create_token(self.token_secret)

    def verify_token(self, token: str) -> Optional[auth.TokenData]:
        return auth.verify_token(token, self.token_secret)

    # Displays

    def subscribe_display(self, device_id: str) -> SSEConnection:
        """Register a display stream (raises DeviceMismatchError on a stale id)."""
        return self.hub.subscribe(device_id, self.device_id)

    # Popups

    def active_popups(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return self.popups.list_active(now or utcnow())

    def create_popup(
        self, data: PopupCreate, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utcnow()
        popup = build_popup(data, now)
        existing = self.popups.get(popup["id"])
        if existing is not None:
            popup["createdAt"] = existing["createdAt"]
        saved = self.popups.upsert(popup, now)
        self._notify_event("popup", {"action": "upsert", "popup": saved})
        return saved

    def update_popup(
        self, popup_id: str, changes: PopupUpdate, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        now = now or utcnow()
        existing = self.popups.get(popup_id)
        if existing is None:
            raise PopupNotFoundError(popup_id)
        saved = self.popups.upsert(apply_popup_update(existing, changes, now), now)
        self._notify_event("popup", {"action": "upsert", "popup": saved})
        return saved

    def clear_popups(self, now: Optional[datetime] = None) -> int:
        count = self.popups.clear_all(now or utcnow())
        self._notify_event("popup", {"action": "clear"})
        return count
