"""
schemas.py - Realtime channel wire contracts.

Every WebSocket text frame, in both directions, is a JSON object:
    {"event": "<name>", "data": <payload>}
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------

# client -> server
REGISTER_USER = "register_user"

# server -> one connection
FORCE_LOGOUT = "force_logout"
REGISTERED = "registered"
ERROR = "error"

# server -> all connections
NEW_REQUEST = "new_request"
REQUEST_APPROVED = "request_approved"

FORCE_LOGOUT_MESSAGE = (
    "Tài khoản của bạn vừa đăng nhập ở một nơi khác. Phiên hiện tại đã bị đăng xuất."
)


class RealtimeEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event: str
    data: Any = None

