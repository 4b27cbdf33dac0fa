"""
Authentication endpoints.

- Email/password login backed by a server-side session
- Logout (revokes the session and its real-time connections)
- Current user
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response

from taskdeck.core.auth import (
    generate_csrf_token,
    get_current_identity,
    get_registry,
    get_session_store,
    get_user_store,
    verify_password,
)
from taskdeck.core.config import get_settings
from taskdeck.core.connections import ConnectionRegistry
from taskdeck.core.errors import AuthError
from taskdeck.core.ports import SessionStore, UserStore
from taskdeck.core.sessions import SessionIdentity, sign_session_id, unsign_session_cookie
from taskdeck_shared.schemas.realtime import CLOSE_AUTH_REQUIRED
from taskdeck_shared.schemas.users import LoginRequest, UserRead

log = structlog.get_logger()
router = APIRouter()


def _set_session_cookies(response: Response, session_id: str, csrf: str) -> None:
    """Set the signed session and CSRF cookies on a response."""
    settings = get_settings()
    common = {
        "secure": settings.secure_cookies,
        "samesite": "lax",
        "path": "/",
        "max_age": settings.session_ttl_seconds,
    }
    response.set_cookie(
        key=settings.session_cookie_name,
        value=sign_session_id(session_id, settings),
        httponly=True,
        **common,
    )
    # JS must read this
    response.set_cookie(key=settings.csrf_cookie_name, value=csrf, httponly=False, **common)


@router.post("/login", response_model=UserRead)
async def login(
    body: LoginRequest,
    response: Response,
    users: UserStore = Depends(get_user_store),
    sessions: SessionStore = Depends(get_session_store),
):
    """Authenticate with email/password and start a server-side session."""
    user = await users.get_by_email(body.email)

    if not user or not user.password_hash or not user.is_active:
        log.warning("auth.login_failure", email=body.email, reason="unknown_user")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not verify_password(body.password, user.password_hash):
        log.warning("auth.login_failure", email=body.email, reason="bad_password")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    session_id = await sessions.create(user.id)
    _set_session_cookies(response, session_id, generate_csrf_token())

    log.info("auth.login_success", user_id=str(user.id))
    return UserRead.model_validate(user)


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    response: Response,
    sessions: SessionStore = Depends(get_session_store),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Revoke the current session and close every connection opened with it."""
    settings = get_settings()
    cookie = request.cookies.get(settings.session_cookie_name)
    if cookie:
        try:
            session_id = unsign_session_cookie(cookie, settings)
        except AuthError:
            session_id = None
        if session_id:
            await sessions.delete(session_id)
            closed = await registry.close_session(
                session_id, CLOSE_AUTH_REQUIRED, "session_revoked"
            )
            log.info("auth.logout", connections_closed=closed)

    response.delete_cookie(settings.session_cookie_name, path="/")
    response.delete_cookie(settings.csrf_cookie_name, path="/")
    response.status_code = 204
    return response


@router.get("/user", response_model=UserRead)
async def current_user(identity: SessionIdentity = Depends(get_current_identity)):
    return UserRead.model_validate(identity.user)
