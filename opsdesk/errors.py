# opsdesk/errors.py
"""
Error taxonomy shared by services and the HTTP layer.

Services raise these; the app factory turns them into ``{"error": message}``
JSON bodies with the matching status code. Anything else that escapes a view
is logged and reported as a generic 500.
"""
from __future__ import annotations


class OpsDeskError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class Unauthorized(OpsDeskError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(OpsDeskError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(OpsDeskError):
    status_code = 404
    default_message = "Not found"


class InvalidState(OpsDeskError):
    """Operation not permitted in the document's current status."""

    status_code = 400
    default_message = "Operation not allowed in current status"


class InvalidInput(OpsDeskError):
    status_code = 400
    default_message = "Invalid request"


class Internal(OpsDeskError):
    status_code = 500
