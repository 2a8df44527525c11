"""Error taxonomy shared by the services and the JSON API."""
from __future__ import annotations

from typing import Optional


class ClassroomError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message}


class ValidationError(ClassroomError):
    """Malformed or unacceptable input."""

    status_code = 400
    default_message = "Invalid input"


class AuthError(ClassroomError):
    """Missing credentials (401) or the wrong role for the operation (403)."""

    status_code = 401
    default_message = "Join the classroom session first."

    @classmethod
    def forbidden(cls, message: str) -> "AuthError":
        return cls(message, status_code=403)


class NotFoundError(ClassroomError):
    status_code = 404
    default_message = "Not found."


class LimitExceeded(ClassroomError):
    """A per-chain or per-student cap has been reached."""

    status_code = 400
    default_message = "Limit reached."


class RemoteError(ClassroomError):
    """Raised when the generation provider fails or answers with garbage."""

    status_code = 502
    default_message = "The generation provider did not respond."


class InternalError(ClassroomError):
    status_code = 500
    default_message = "Unexpected server error."
