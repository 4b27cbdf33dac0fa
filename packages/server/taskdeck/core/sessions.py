"""
Server-side sessions and handshake authentication.

The browser holds only a signed session id in the ``td_session`` cookie:
``s:`` followed by an HS256 token whose ``sid`` claim names a Redis key. The
session payload itself (the authenticated principal) lives in Redis, so the
server is the only authority on who a connection belongs to.

``SessionValidator`` is shared by the WebSocket handshake and the HTTP
``current_user`` dependency.
"""

from __future__ import annotations

import json
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import jwt
import redis.asyncio as redis
import structlog
from starlette.requests import cookie_parser

from taskdeck.core.config import Settings, get_settings
from taskdeck.core.errors import (
    InvalidSession,
    NoOrganization,
    NoSessionCookie,
    OriginRejected,
    UserNotFound,
)
from taskdeck.core.ports import SessionPayload, SessionStore, UserStore
from taskdeck.models.user import User

log = structlog.get_logger()

SESSION_PREFIX = "s:"
REDIS_SESSION_KEY_PREFIX = "td:session:"


# ---------------------------------------------------------------------------
# Cookie signing
# ---------------------------------------------------------------------------

def sign_session_id(session_id: str, settings: Settings | None = None) -> str:
    """Build the cookie value for a session id."""
    settings = settings or get_settings()
    token = jwt.encode(
        {"sid": session_id, "iat": datetime.now(timezone.utc)},
        settings.secret_key,
        algorithm=settings.session_algorithm,
    )
    return f"{SESSION_PREFIX}{token}"


def unsign_session_cookie(value: str, settings: Settings | None = None) -> str:
    """Strip the prefix, verify the signature and return the session id."""
    settings = settings or get_settings()
    if not value.startswith(SESSION_PREFIX):
        raise InvalidSession("Session cookie has an unknown format")
    try:
        claims = jwt.decode(
            value[len(SESSION_PREFIX):],
            settings.secret_key,
            algorithms=[settings.session_algorithm],
        )
    except jwt.PyJWTError:
        raise InvalidSession("Session cookie signature is invalid")
    sid = claims.get("sid")
    if not isinstance(sid, str) or not sid:
        raise InvalidSession("Session cookie carries no session id")
    return sid


# ---------------------------------------------------------------------------
# Redis session store
# ---------------------------------------------------------------------------

class RedisSessionStore:
    """SessionStore backed by Redis string keys with a TTL."""

    def __init__(self, client: redis.Redis, ttl_seconds: int):
        self._redis = client
        self._ttl = ttl_seconds

    async def get(self, session_id: str) -> Optional[SessionPayload]:
        raw = await self._redis.get(f"{REDIS_SESSION_KEY_PREFIX}{session_id}")
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("sessions.corrupt_payload", session_id=session_id)
            return None
        return payload if isinstance(payload, dict) else None

    async def create(self, user_id: uuid.UUID) -> str:
        session_id = secrets.token_urlsafe(32)
        payload = {
            "user_id": str(user_id),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._redis.setex(
            f"{REDIS_SESSION_KEY_PREFIX}{session_id}", self._ttl, json.dumps(payload)
        )
        return session_id

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(f"{REDIS_SESSION_KEY_PREFIX}{session_id}")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionIdentity:
    """Who a connection or request belongs to, as resolved by the server."""
    user_id: uuid.UUID
    organization_id: uuid.UUID
    session_id: str
    user: User


class SessionValidator:
    """
    Resolve a raw ``Cookie`` header (and optional ``Origin``) to an identity.

    Raises:
        OriginRejected: origin present but not in the allow-list
        NoSessionCookie: no session cookie in the header
        InvalidSession: bad signature, unknown session, or no principal
        UserNotFound: the principal no longer exists or is deactivated
        NoOrganization: the user has not joined an organization yet
    """

    def __init__(
        self,
        sessions: SessionStore,
        users: UserStore,
        settings: Settings | None = None,
    ):
        self._sessions = sessions
        self._users = users
        self._settings = settings or get_settings()

    def check_origin(self, origin: Optional[str]) -> None:
        if origin and origin not in self._settings.allowed_origins:
            raise OriginRejected(f"Origin not allowed: {origin}")

    def session_id_from_cookies(self, cookie_header: Optional[str]) -> str:
        cookies = cookie_parser(cookie_header or "")
        value = cookies.get(self._settings.session_cookie_name)
        if not value:
            raise NoSessionCookie()
        return unsign_session_cookie(value, self._settings)

    async def validate(
        self,
        cookie_header: Optional[str],
        origin: Optional[str] = None,
    ) -> SessionIdentity:
        self.check_origin(origin)
        session_id = self.session_id_from_cookies(cookie_header)

        payload = await self._sessions.get(session_id)
        if not payload or not payload.get("user_id"):
            raise InvalidSession("Session not found or not authenticated")

        try:
            user_id = uuid.UUID(str(payload["user_id"]))
        except ValueError:
            raise InvalidSession("Session principal is not a valid user id")

        user = await self._users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise UserNotFound(f"User {user_id} not found")
        if user.organization_id is None:
            raise NoOrganization(f"User {user_id} has no organization")

        return SessionIdentity(
            user_id=user.id,
            organization_id=user.organization_id,
            session_id=session_id,
            user=user,
        )
