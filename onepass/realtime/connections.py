"""
connections.py - Live WebSocket connections held by this process.

ConnectionManager knows nothing about single-session rules; it only tracks
open sockets, which user each socket claims to be, and delivers frames.
Delivery is best-effort: a failed send is logged and reported as False,
never raised, so one broken socket cannot abort a fan-out.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}
        self._claims: dict[str, str] = {}   # connection_id -> user_id

    async def connect(self, websocket: WebSocket) -> str:
        """Accept the socket and return its new connection id."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self._sockets[connection_id] = websocket
        logger.info("Client connected connection_id=%s open=%d", connection_id, len(self._sockets))
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)
        self._claims.pop(connection_id, None)
        logger.info("Client disconnected connection_id=%s open=%d", connection_id, len(self._sockets))

    def is_open(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    @property
    def open_count(self) -> int:
        return len(self._sockets)

    # ------------------------------------------------------------------
    # Identity claims
    # ------------------------------------------------------------------

    def claim(self, connection_id: str, user_id: str) -> Optional[str]:
        """Record that connection_id speaks for user_id; return the previous claim."""
        previous = self._claims.get(connection_id)
        self._claims[connection_id] = user_id
        return previous

    def claimed_user(self, connection_id: str) -> Optional[str]:
        return self._claims.get(connection_id)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send(self, connection_id: str, event: str, data: Any = None) -> bool:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json({"event": event, "data": jsonable_encoder(data)})
        except Exception as exc:
            logger.warning(
                "Send failed connection_id=%s event=%s: %s", connection_id, event, exc
            )
            return False
        return True

    async def broadcast(self, event: str, data: Any = None) -> int:
        """Send to every open connection; return how many deliveries succeeded."""
        payload = jsonable_encoder(data)
        delivered = 0
        # Copy: sockets may disconnect while we await sends
        for connection_id in list(self._sockets):
            if await self.send(connection_id, event, payload):
                delivered += 1
        logger.info("Broadcast event=%s delivered=%d", event, delivered)
        return delivered
