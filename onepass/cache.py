"""
cache.py - Redis layer for OnePass.

Only used when settings.session_backend == "redis", i.e. when the API runs as
several replicas and the single-active-session rule has to hold across all
of them.

Namespace conventions:
  binding:{user_id}      -> connection id currently bound to the user   TTL 24h
  realtime:relay         -> pub/sub channel carrying evictions and fan-outs

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x)
  - Pool created once in lifespan, stored on app.state.redis
  - Helper functions take the client as a param - no module-level global state
  - Logs user ids and connection ids only
"""
import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

from onepass.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# TTL constants (seconds)
# ---------------------------------------------------------------------------
BINDING_TTL: int = 86400   # 24 hours; bounds orphaned bindings of crashed replicas

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
BINDING_PREFIX = "binding"
RELAY_CHANNEL = "realtime:relay"

# Compare-and-delete: drop the binding only if it still points at ARGV[1]
_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_binding_key(user_id: str) -> str:
    """Build Redis key for a user's session binding: binding:{user_id}"""
    return f"{BINDING_PREFIX}:{user_id}"


# ---------------------------------------------------------------------------
# Pool factory - called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Session binding helpers
# ---------------------------------------------------------------------------

async def swap_binding(
    client: aioredis.Redis, user_id: str, connection_id: str
) -> Optional[str]:
    """
    Atomically bind user_id to connection_id and return the previous
    connection id (None if the user was unbound). Resets the TTL.
    """
    key = make_binding_key(user_id)
    previous = await client.set(key, connection_id, ex=BINDING_TTL, get=True)
    logger.info("Binding swapped user_id=%s connection_id=%s previous=%s", user_id, connection_id, previous)
    return previous


async def release_binding(
    client: aioredis.Redis, user_id: str, connection_id: str
) -> bool:
    """Delete the binding only if it still points at connection_id."""
    key = make_binding_key(user_id)
    removed = await client.eval(_RELEASE_SCRIPT, 1, key, connection_id)
    return bool(removed)


async def get_binding(client: aioredis.Redis, user_id: str) -> Optional[str]:
    return await client.get(make_binding_key(user_id))


# ---------------------------------------------------------------------------
# Relay helpers (cross-replica delivery)
# ---------------------------------------------------------------------------

async def publish_relay(client: aioredis.Redis, message: dict[str, Any]) -> None:
    """Publish a relay message; every replica's listener receives it."""
    await client.publish(RELAY_CHANNEL, json.dumps(message, default=str))
