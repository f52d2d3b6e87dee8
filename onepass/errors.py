"""
errors.py - Domain error taxonomy.

Every error raised by business logic derives from OnePassError and carries the
HTTP status and semantic code used by the global exception handler in main.py
to build the standard {error: {code, message, details}} envelope.
"""
from __future__ import annotations

from typing import Any, Optional


class OnePassError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(OnePassError):
    """Missing or malformed required field. Raised before any mutation."""
    status_code = 422
    code = "VALIDATION_ERROR"

    @classmethod
    def for_field(cls, field: str, issue: str) -> "ValidationError":
        return cls(issue, details=[{"field": field, "issue": issue}])


class NotFoundError(OnePassError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(OnePassError):
    """Insufficient wallet balance, duplicate unique key."""
    status_code = 409
    code = "CONFLICT"


class UpstreamError(OnePassError):
    """Persistence, storage or mail collaborator failure."""
    status_code = 502
    code = "UPSTREAM_ERROR"
