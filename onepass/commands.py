"""
commands.py - Side effects as data.

Business functions (approval, request intake, partner registration) return
commands instead of sending email or pushing realtime events themselves.
Routes dispatch them after the database transaction has committed, so a
rolled-back request never notifies anyone and the business functions stay
testable without a socket or an SMTP server.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Union

from onepass.mailer import Mailer
from onepass.realtime.registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailCommand:
    recipient: str
    subject: str
    html: str


@dataclass(frozen=True)
class BroadcastCommand:
    event: str
    payload: Any


Command = Union[EmailCommand, BroadcastCommand]


async def dispatch(
    commands: Iterable[Command],
    registry: SessionRegistry,
    mailer: Mailer,
) -> None:
    """
    Run commands in order. Email is fire-and-forget (Mailer logs failures);
    broadcasts are best-effort per connection.
    """
    for command in commands:
        if isinstance(command, EmailCommand):
            await mailer.send_template(command.recipient, command.subject, command.html)
        elif isinstance(command, BroadcastCommand):
            await registry.notify_new_entity(command.event, command.payload)
        else:
            logger.error("Unknown command type=%s", type(command).__name__)
