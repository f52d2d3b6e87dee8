"""
fakes.py - Test doubles for the WebSocket, mail and pub/sub collaborators.
"""
from __future__ import annotations

import json
from typing import Any, Optional


class FakeWebSocket:
    """Stands in for a starlette WebSocket: records frames, can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.accepted = False
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[Optional[str], str, str]] = []

    async def send_template(self, recipient: Optional[str], subject: str, html: str) -> None:
        self.sent.append((recipient, subject, html))

    def recipients(self) -> list[Optional[str]]:
        return [r for r, _, _ in self.sent]


class FakeRelay:
    """Collects what SessionRegistry publishes to the cross-replica channel."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, json.loads(message)))
        return 1


class FakeRedis:
    """
    Just enough of redis.asyncio.Redis for RedisBindingStore: SET with GET/EX,
    GET, and EVAL of the compare-and-delete script. Calls are recorded.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.calls: list[tuple] = []

    async def set(self, key: str, value: str, ex: Optional[int] = None, get: bool = False) -> Optional[str]:
        self.calls.append(("set", key, value, ex, get))
        previous = self.data.get(key)
        self.data[key] = value
        return previous if get else None

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def eval(self, script: str, numkeys: int, *args: str) -> int:
        key, expected = args[0], args[1]
        self.calls.append(("eval", key, expected))
        assert numkeys == 1 and "DEL" in script
        if self.data.get(key) == expected:
            del self.data[key]
            return 1
        return 0
