# brewqueue/api/errors.py
"""
Typed errors for the dispatch API.

Each error maps to a specific HTTP status code.  The core dispatcher signals
"not found" with ``None``; route handlers translate that into these errors
and the transport layer turns them into JSON responses, so no HTTP concerns
leak into the core.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatch API errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(DispatchError):
    """Invalid request (400)."""

    status_code = 400


class NotFoundError(DispatchError):
    """Order or barista not found (404)."""

    status_code = 404
