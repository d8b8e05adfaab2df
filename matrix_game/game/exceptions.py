"""
Game Errors

Every rejected operation raises one of four error kinds. Each carries a
short code and an HTTP-style status so a transport layer can map it
without inspecting messages.
"""

from typing import Optional


class GameError(Exception):
    """Base class for all orchestrator errors."""

    code = "GAME_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.details}


class NotFoundError(GameError):
    """The referenced game, round, action, argument or player does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(GameError):
    """The operation is not allowed in the current phase or status."""

    code = "INVALID_STATE"
    status_code = 400


class PermissionDeniedError(GameError):
    """The caller is not a member, not the host, or not the right role."""

    code = "PERMISSION_DENIED"
    status_code = 403


class ConflictError(GameError):
    """A duplicate submission, or another writer got there first."""

    code = "CONFLICT"
    status_code = 409
