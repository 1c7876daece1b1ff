from __future__ import annotations

from typing import Any


class ProgressionError(Exception):
    """Base error for progression operations.

    Carries the session id and operation name so callers can build a
    user-facing message without parsing the exception text.
    """

    def __init__(
        self,
        message: str,
        *,
        session_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.session_id = session_id
        self.operation = operation
        super().__init__(message)

    @property
    def error_code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "session_id": self.session_id,
            "operation": self.operation,
        }

    def __str__(self) -> str:
        context = [
            f"{key}={value}"
            for key, value in (("session_id", self.session_id), ("operation", self.operation))
            if value is not None
        ]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class NotAttachedError(ProgressionError):
    """Raised when a mutation targets a session with no live cache entry."""


class InvalidAmountError(ProgressionError):
    """Raised for a negative grant amount or an out-of-range level."""


class PersistenceIOError(ProgressionError):
    """Raised when the durable progression file cannot be read or written."""
