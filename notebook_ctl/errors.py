"""
Error taxonomy for the notebook control protocol.

Structural errors abort a whole request. Per-item failures are absorbed
into response shapes by the handlers and never raised to the caller.
"""

from typing import Any, Optional


class ControlError(Exception):
    """Base class for every failure the dispatcher reports to a caller."""

    code = "control_error"
    status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Convert to the wire representation of a failure."""
        data = {"error": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ProtocolError(ControlError):
    """Malformed request: wrong arity, bad types, unknown operation."""

    code = "protocol_error"
    status = 400


class NotFoundError(ControlError):
    """A cell, file or session identifier no longer exists."""

    code = "not_found"
    status = 404


class SessionMismatchError(ControlError):
    """The request targets a session that is unknown or was shut down."""

    code = "session_mismatch"
    status = 410

    def __init__(self, session_id: Optional[str], message: Optional[str] = None):
        super().__init__(
            message or f"Session {session_id!r} is not an active session",
            session_id=session_id,
        )
        self.session_id = session_id


class InvalidPathError(ControlError):
    """Path escapes the workspace root or its parent does not exist."""

    code = "invalid_path"
    status = 400


class ConflictError(ControlError):
    """Concurrent mutation of the same path or notebook binding."""

    code = "conflict"
    status = 409


class BackendExecutionError(ControlError):
    """The operation ran but failed for domain reasons."""

    code = "backend_error"
    status = 500
