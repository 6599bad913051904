"""Domain-specific exceptions for call lifecycle operations.

These exceptions are safe to import from API layers without touching the database.
"""

from __future__ import annotations


class CallError(Exception):
    status_code: int = 500
    default_detail: str = "Call service error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ValidationError(CallError):
    status_code = 400
    default_detail = "Invalid or missing request fields."


class NotFoundError(CallError):
    status_code = 404
    default_detail = "Call not found"


class InvalidStateError(CallError):
    status_code = 409
    default_detail = "Call is not in a valid state for this operation."


class UpstreamProtocolError(CallError):
    status_code = 502
    default_detail = "Chat homeserver request failed."


class StoreError(CallError):
    status_code = 500
    default_detail = "Call store operation failed."
