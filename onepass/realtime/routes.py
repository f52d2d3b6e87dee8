"""
Realtime WebSocket route - GET /ws

Connection lifecycle drives the session registry:
  connect              -> ConnectionManager.connect
  register_user(uid)   -> SessionRegistry.register (older socket gets force_logout)
  disconnect(reason)   -> SessionRegistry.unregister, then ConnectionManager.disconnect
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from onepass.realtime.registry import SessionRegistry
from onepass.realtime.schemas import ERROR, REGISTER_USER, REGISTERED, RealtimeEvent

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    registry: SessionRegistry = websocket.app.state.registry
    connections = registry.connections
    connection_id = await connections.connect(websocket)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = RealtimeEvent.model_validate_json(raw)
            except PydanticValidationError:
                await connections.send(connection_id, ERROR, "Malformed event")
                continue

            if message.event == REGISTER_USER:
                if message.data is None or str(message.data).strip() == "":
                    await connections.send(connection_id, ERROR, "register_user requires a user id")
                    continue
                await registry.register(str(message.data).strip(), connection_id)
                await connections.send(connection_id, REGISTERED, {"connection_id": connection_id})
            else:
                logger.debug("Ignoring event=%s connection_id=%s", message.event, connection_id)
    except WebSocketDisconnect as exc:
        logger.info("Socket closed connection_id=%s code=%s", connection_id, exc.code)
    finally:
        await registry.unregister(connection_id)
        connections.disconnect(connection_id)
