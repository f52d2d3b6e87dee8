"""
registry.py - Single-active-session enforcement for realtime connections.

A user identity is bound to at most one connection. Per user the registry
moves between two states only:

    Unbound --register(u, c)--> Bound(c)
    Bound(c) --register(u, c2)--> Bound(c2)      (c receives force_logout)
    Bound(c) --unregister(c)--> Unbound          (stale unregister(c_old) is a no-op)

Bindings live in a BindingStore:
  - InMemoryBindingStore: per-process dict, correct for a single replica.
  - RedisBindingStore:    shared across replicas (settings.session_backend="redis").
    Evictions and fan-outs whose target socket lives on another replica go
    through a Redis pub/sub relay that every replica listens on.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis

from onepass.cache import (
    RELAY_CHANNEL,
    get_binding,
    publish_relay,
    release_binding,
    swap_binding,
)
from onepass.realtime.connections import ConnectionManager
from onepass.realtime.schemas import FORCE_LOGOUT, FORCE_LOGOUT_MESSAGE

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Binding stores
# ---------------------------------------------------------------------------

class BindingStore(Protocol):
    async def bind(self, user_id: str, connection_id: str) -> Optional[str]:
        """Bind user_id to connection_id, returning the previous connection id."""
        ...

    async def release(self, user_id: str, connection_id: str) -> bool:
        """Remove the binding only if it still points at connection_id."""
        ...

    async def current(self, user_id: str) -> Optional[str]:
        ...


class InMemoryBindingStore:
    def __init__(self) -> None:
        self._bindings: dict[str, str] = {}

    async def bind(self, user_id: str, connection_id: str) -> Optional[str]:
        previous = self._bindings.get(user_id)
        self._bindings[user_id] = connection_id
        return previous

    async def release(self, user_id: str, connection_id: str) -> bool:
        if self._bindings.get(user_id) != connection_id:
            return False
        del self._bindings[user_id]
        return True

    async def current(self, user_id: str) -> Optional[str]:
        return self._bindings.get(user_id)


class RedisBindingStore:
    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def bind(self, user_id: str, connection_id: str) -> Optional[str]:
        return await swap_binding(self._client, user_id, connection_id)

    async def release(self, user_id: str, connection_id: str) -> bool:
        return await release_binding(self._client, user_id, connection_id)

    async def current(self, user_id: str) -> Optional[str]:
        return await get_binding(self._client, user_id)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class SessionRegistry:
    """
    Owns the user -> connection bindings and talks to clients through an
    injected ConnectionManager. Built once in the app lifespan and stored on
    app.state.registry.

    relay: optional Redis client. When set, fan-outs and evictions of sockets
    not held by this process are published for the other replicas.
    """

    def __init__(
        self,
        connections: ConnectionManager,
        bindings: Optional[BindingStore] = None,
        relay: Optional[aioredis.Redis] = None,
    ) -> None:
        self.connections = connections
        self.bindings = bindings if bindings is not None else InMemoryBindingStore()
        self._relay = relay

    async def register(self, user_id: Any, connection_id: str) -> Optional[str]:
        """
        Bind user_id to connection_id.

        Returns the evicted connection id when an older, different connection
        was bound, else None. Repeating an identical registration is a no-op.
        """
        user_id = str(user_id)
        previous_claim = self.connections.claim(connection_id, user_id)
        if previous_claim is not None and previous_claim != user_id:
            # The socket switched identity; its old binding must not linger
            await self.bindings.release(previous_claim, connection_id)

        previous = await self.bindings.bind(user_id, connection_id)
        if previous is None or previous == connection_id:
            logger.info("User registered user_id=%s connection_id=%s", user_id, connection_id)
            return None

        logger.info(
            "User re-registered user_id=%s connection_id=%s evicting=%s",
            user_id,
            connection_id,
            previous,
        )
        await self._evict(previous, user_id)
        return previous

    async def unregister(self, connection_id: str) -> bool:
        """
        Drop the binding of the user this connection claimed, if the binding
        still points here. Returns True when a binding was removed.
        """
        user_id = self.connections.claimed_user(connection_id)
        if user_id is None:
            return False
        removed = await self.bindings.release(user_id, connection_id)
        if removed:
            logger.info("User unbound user_id=%s connection_id=%s", user_id, connection_id)
        else:
            logger.debug("Stale disconnect ignored user_id=%s connection_id=%s", user_id, connection_id)
        return removed

    async def notify_new_entity(self, event: str, entity: Any) -> int:
        """
        Fan an event out to every connected client (not scoped to a user).
        Returns the number of local deliveries; with a relay the other
        replicas deliver on receipt.
        """
        if self._relay is not None:
            await publish_relay(self._relay, {"kind": "broadcast", "event": event, "data": entity})
            return 0
        return await self.connections.broadcast(event, entity)

    async def _evict(self, connection_id: str, user_id: str) -> None:
        if self.connections.is_open(connection_id):
            delivered = await self.connections.send(connection_id, FORCE_LOGOUT, FORCE_LOGOUT_MESSAGE)
            if not delivered:
                logger.warning(
                    "force_logout not delivered user_id=%s connection_id=%s", user_id, connection_id
                )
            return
        if self._relay is not None:
            await publish_relay(
                self._relay,
                {"kind": "evict", "connection_id": connection_id, "message": FORCE_LOGOUT_MESSAGE},
            )


# ---------------------------------------------------------------------------
# Relay listener (one task per replica, started in lifespan)
# ---------------------------------------------------------------------------

async def handle_relay_message(connections: ConnectionManager, message: dict[str, Any]) -> None:
    kind = message.get("kind")
    if kind == "evict":
        connection_id = message.get("connection_id", "")
        if connections.is_open(connection_id):
            await connections.send(connection_id, FORCE_LOGOUT, message.get("message"))
    elif kind == "broadcast":
        await connections.broadcast(message["event"], message.get("data"))
    else:
        logger.warning("Unknown relay message kind=%s", kind)


async def run_relay_listener(client: aioredis.Redis, connections: ConnectionManager) -> None:
    """Deliver relayed evictions and fan-outs to this replica's sockets until cancelled."""
    pubsub = client.pubsub()
    await pubsub.subscribe(RELAY_CHANNEL)
    logger.info("Realtime relay listening on %s", RELAY_CHANNEL)
    try:
        async for raw in pubsub.listen():
            if raw.get("type") != "message":
                continue
            try:
                message = json.loads(raw["data"])
            except (TypeError, json.JSONDecodeError):
                logger.warning("Malformed relay message dropped")
                continue
            await handle_relay_message(connections, message)
    except asyncio.CancelledError:
        await pubsub.unsubscribe(RELAY_CHANNEL)
        await pubsub.aclose()
        raise
