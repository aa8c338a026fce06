"""
Server-Sent Events fan-out to display devices.

Each connection owns a bounded asyncio queue. Broadcasting only enqueues,
so one slow or broken client never blocks the others: a connection whose
queue overflows or whose write fails is dropped and left to reconnect.

The keepalive is scoped to the stream generator, so it ends on every exit
path (client disconnect, error, server shutdown).
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from starlette.requests import Request

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_SECONDS = 25.0
DEFAULT_QUEUE_SIZE = 100

CONNECTED_FRAME = ":connected\n\n"
HEARTBEAT_FRAME = ":heartbeat\n\n"

# Ends a stream (server shutdown or dropped connection)
_CLOSE = None


class DeviceMismatchError(LookupError):
    """A display subscribed with a device id the server does not know."""


def format_event(event: str, data: Any) -> str:
    """Encode one named SSE event with a JSON payload."""
    body = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event}\ndata: {body}\n\n"


class SSEConnection:
    """One live display connection."""

    def __init__(self, device_id: str, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.device_id = device_id
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def send(self, frame: str) -> None:
        """Enqueue a frame; raises asyncio.QueueFull when the client lags."""
        if self.closed:
            raise ConnectionError("connection closed")
        self.queue.put_nowait(frame)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake the stream so it can exit; drain first if it is full
        while True:
            try:
                self.queue.put_nowait(_CLOSE)
                return
            except asyncio.QueueFull:
                try:
                    self.queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass


class SSEHub:
    """Registry of live connections keyed by device identity."""

    def __init__(self, keepalive_seconds: float = DEFAULT_KEEPALIVE_SECONDS):
        self.keepalive_seconds = keepalive_seconds
        self._clients: Dict[str, Set[SSEConnection]] = {}

    # Registry

    def subscribe(self, device_id: str, expected_device_id: str) -> SSEConnection:
        """
        Register a connection for ``device_id``.

        Raises:
            DeviceMismatchError: ``device_id`` is not the server's current
                identity (the server was reset or re-provisioned). Nothing is
                registered.
        """
        if device_id != expected_device_id:
            raise DeviceMismatchError(device_id)
        connection = SSEConnection(device_id)
        self._clients.setdefault(device_id, set()).add(connection)
        logger.info(
            f"Display connected ({device_id}), "
            f"{self.connection_count(device_id)} connection(s)"
        )
        return connection

    def unsubscribe(self, connection: SSEConnection) -> None:
        """Deregister a connection; forget the identity when it was the last one."""
        connection.close()
        connections = self._clients.get(connection.device_id)
        if connections is None or connection not in connections:
            return
        connections.discard(connection)
        if not connections:
            del self._clients[connection.device_id]
        logger.info(f"Display disconnected ({connection.device_id})")

    def device_ids(self) -> List[str]:
        return list(self._clients.keys())

    def connection_count(self, device_id: Optional[str] = None) -> int:
        if device_id is not None:
            return len(self._clients.get(device_id, ()))
        return sum(len(c) for c in self._clients.values())

    def close_all(self) -> None:
        """End every stream (server shutdown)."""
        for connections in list(self._clients.values()):
            for connection in list(connections):
                self.unsubscribe(connection)

    # Broadcasting

    def _send_to_device(self, device_id: str, frame: str) -> int:
        delivered = 0
        for connection in list(self._clients.get(device_id, ())):
            try:
                connection.send(frame)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Dropping display connection for {device_id}: "
                    f"{type(e).__name__} {e}"
                )
                self.unsubscribe(connection)
        return delivered

    def broadcast_state(self, device_id: str, state: Dict[str, Any]) -> int:
        """Send the full state document to every connection of ``device_id``."""
        return self._send_to_device(device_id, format_event("state", state))

    def broadcast_event(self, device_id: str, event: str, data: Any = None) -> int:
        """Send a named event (e.g. ``popup``) to every connection of ``device_id``."""
        return self._send_to_device(device_id, format_event(event, data or {}))

    def broadcast_all(self, state: Dict[str, Any]) -> int:
        """Send the state document to every known device identity."""
        return sum(
            self.broadcast_state(device_id, state) for device_id in self.device_ids()
        )

    # Streaming

    async def stream(
        self, connection: SSEConnection, request: Optional[Request] = None
    ) -> AsyncIterator[str]:
        """
        Yield SSE frames for ``connection`` until it closes.

        Sends ``:connected`` first, then queued frames in order, and a
        ``:heartbeat`` comment every ``keepalive_seconds`` regardless of
        other traffic so idle proxies keep the connection open.
        """
        loop = asyncio.get_running_loop()
        next_heartbeat = loop.time() + self.keepalive_seconds
        try:
            yield CONNECTED_FRAME
            while True:
                if request is not None and await request.is_disconnected():
                    break
                now = loop.time()
                if now >= next_heartbeat:
                    next_heartbeat = now + self.keepalive_seconds
                    yield HEARTBEAT_FRAME
                    continue
                try:
                    frame = await asyncio.wait_for(
                        connection.queue.get(), timeout=next_heartbeat - now
                    )
                except asyncio.TimeoutError:
                    continue
                if frame is _CLOSE:
                    break
                yield frame
        finally:
            self.unsubscribe(connection)
