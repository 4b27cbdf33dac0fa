"""
Domain exceptions raised by the real-time and ordering core.

Route handlers translate these into HTTP responses; the WebSocket endpoint
translates ``AuthError`` and ``MalformedMessage`` into close codes.
"""

from __future__ import annotations

from taskdeck_shared.schemas.realtime import CLOSE_AUTH_REQUIRED, CLOSE_BAD_MESSAGE


class TaskdeckError(Exception):
    """Base class for Taskdeck domain errors."""


# ---------------------------------------------------------------------------
# Handshake authentication (terminal: the connection is closed, never retried)
# ---------------------------------------------------------------------------

class AuthError(TaskdeckError):
    reason = "authentication_required"
    close_code = CLOSE_AUTH_REQUIRED

    def __init__(self, message: str | None = None):
        super().__init__(message or self.reason)


class NoSessionCookie(AuthError):
    reason = "no_session_cookie"


class InvalidSession(AuthError):
    reason = "invalid_session"


class UserNotFound(AuthError):
    reason = "user_not_found"


class NoOrganization(AuthError):
    reason = "no_organization"


class OriginRejected(AuthError):
    reason = "origin_rejected"


# ---------------------------------------------------------------------------
# Message layer
# ---------------------------------------------------------------------------

class MalformedMessage(TaskdeckError):
    reason = "bad_message_format"
    close_code = CLOSE_BAD_MESSAGE


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class DispatchPersistenceFailure(TaskdeckError):
    """The notification record could not be written; nothing was pushed."""


# ---------------------------------------------------------------------------
# Tasks and ordering
# ---------------------------------------------------------------------------

class PositionSpaceExhausted(TaskdeckError):
    """No key fits strictly between the requested bounds; the column needs a rebalance."""


class TaskNotFound(TaskdeckError):
    pass


class ReorderConflict(TaskdeckError):
    """The submitted neighbor keys do not match the column's current order."""
