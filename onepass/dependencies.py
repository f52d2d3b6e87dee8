"""
dependencies.py - FastAPI dependencies for the process-wide services built
in the lifespan and kept on app.state.

Routes take these through Depends() so tests can swap them with
app.dependency_overrides.
"""
from fastapi import Request

from onepass.billing.codes import SequenceLocks
from onepass.mailer import Mailer
from onepass.realtime.registry import SessionRegistry
from onepass.storage import LocalStorage


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_storage(request: Request) -> LocalStorage:
    return request.app.state.storage


def get_sequence_locks(request: Request) -> SequenceLocks:
    return request.app.state.sequence_locks
