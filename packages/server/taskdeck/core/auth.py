"""
Authentication and authorization for Taskdeck.

Supports:
- Email/password login (bcrypt)
- Server-side sessions resolved through the shared SessionValidator
- Role-based authorization dependencies
- Per-request wiring of the stores and services the routes use
"""

from __future__ import annotations

import secrets

import bcrypt
import redis.asyncio as redis
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession

from taskdeck.core.config import get_settings
from taskdeck.core.connections import ConnectionRegistry
from taskdeck.core.database import async_session_factory, get_session
from taskdeck.core.errors import AuthError
from taskdeck.core.redis import get_redis
from taskdeck.core.sessions import RedisSessionStore, SessionIdentity, SessionValidator
from taskdeck.services.notifications import NotificationDispatcher
from taskdeck.services.stores import (
    SqlCommentStore,
    SqlNotificationStore,
    SqlTaskStore,
    SqlUserStore,
)
from taskdeck.services.tasks import ReorderCoordinator
from taskdeck_shared.schemas.common import Role

log = structlog.get_logger()

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Not a bcrypt hash
        return False


# ---------------------------------------------------------------------------
# CSRF Token
# ---------------------------------------------------------------------------

def generate_csrf_token() -> str:
    """Generate a random CSRF token."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

def get_registry(connection: HTTPConnection) -> ConnectionRegistry:
    """The process-wide connection registry created at application startup."""
    return connection.app.state.registry


async def get_session_store() -> RedisSessionStore:
    return RedisSessionStore(await get_redis(), get_settings().session_ttl_seconds)


def get_user_store() -> SqlUserStore:
    return SqlUserStore(async_session_factory)


def get_session_validator(
    sessions: RedisSessionStore = Depends(get_session_store),
    users: SqlUserStore = Depends(get_user_store),
) -> SessionValidator:
    return SessionValidator(sessions, users)


def get_task_store(session: AsyncSession = Depends(get_session)) -> SqlTaskStore:
    return SqlTaskStore(session)


def get_comment_store(session: AsyncSession = Depends(get_session)) -> SqlCommentStore:
    return SqlCommentStore(session)


def get_notification_store(
    session: AsyncSession = Depends(get_session),
) -> SqlNotificationStore:
    return SqlNotificationStore(session)


def get_dispatcher(
    tasks: SqlTaskStore = Depends(get_task_store),
    users: SqlUserStore = Depends(get_user_store),
    notifications: SqlNotificationStore = Depends(get_notification_store),
    registry: ConnectionRegistry = Depends(get_registry),
) -> NotificationDispatcher:
    return NotificationDispatcher(tasks, users, users, notifications, registry)


def get_reorder_coordinator(
    tasks: SqlTaskStore = Depends(get_task_store),
) -> ReorderCoordinator:
    return ReorderCoordinator(tasks)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

async def get_current_identity(
    request: Request,
    validator: SessionValidator = Depends(get_session_validator),
) -> SessionIdentity:
    """Main authentication dependency: the session cookie on the request."""
    try:
        identity = await validator.validate(request.headers.get("cookie"))
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=exc.reason)
    except redis.RedisError as exc:
        log.error("auth.session_store_unavailable", error=str(exc))
        raise HTTPException(status_code=503, detail="Session store unavailable")

    request.state.identity = identity
    structlog.contextvars.bind_contextvars(user_id=str(identity.user_id))
    return identity


# ---------------------------------------------------------------------------
# Authorization dependencies (role checks)
# ---------------------------------------------------------------------------

def require_roles(*roles: Role):
    """Dependency factory admitting only the given roles."""
    allowed = {r.value for r in roles}

    async def _check(
        identity: SessionIdentity = Depends(get_current_identity),
    ) -> SessionIdentity:
        if identity.user.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return identity

    return _check


require_manager = require_roles(Role.ADMIN, Role.MANAGER)
