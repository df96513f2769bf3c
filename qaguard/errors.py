"""Error taxonomy shared by the services, the queue runtime and the API.

NotFound / InvalidState are terminal: a queued job raising them is dropped.
Conflict and TransientDependency are retry-later signals.
"""
from __future__ import annotations


class ModerationError(Exception):
    """Base class for every pipeline error."""

    status_code = 500
    error = "moderation_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ModerationError):
    """Content, report, version or user missing (or already deleted)."""

    status_code = 404
    error = "not_found"


class InvalidState(ModerationError):
    """A precondition of the requested transition does not hold."""

    status_code = 400
    error = "invalid_state"


class PermissionDenied(InvalidState):
    """The actor may not perform the transition (not the owner, not a moderator)."""

    status_code = 403
    error = "forbidden"


class Conflict(ModerationError):
    """A rate or cooldown ceiling was hit; retry after `retry_after` seconds."""

    status_code = 429
    error = "cooldown"

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class TransientDependency(ModerationError):
    """Oracle timeout, datastore unavailable — retried by the queue runtime."""

    status_code = 503
    error = "dependency_unavailable"


TERMINAL_ERRORS = (NotFound, InvalidState)
