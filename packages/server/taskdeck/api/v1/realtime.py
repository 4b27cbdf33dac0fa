"""
Real-time notification channel.

- WS /ws: session-authenticated, organization-scoped push channel

Handshake:
1. Accept the upgrade, then validate the session cookie (and Origin) within
   ``ws_auth_timeout_seconds``. Rejections close immediately with 1008 and a
   reason string; nothing else is ever sent on a rejected socket.
2. Register the connection under the user's organization and send one
   ``connection`` frame.

After that the client only sends ``ping`` frames; any inbound frame counts as
a heartbeat. Identity comes from the server-side session alone, so any user or
organization id a client puts in a frame is ignored.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional, Union

import redis.asyncio as redis
import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from taskdeck.core.auth import get_registry, get_session_validator
from taskdeck.core.config import get_settings
from taskdeck.core.connections import Connection, ConnectionRegistry
from taskdeck.core.errors import AuthError, MalformedMessage
from taskdeck.core.sessions import SessionIdentity, SessionValidator
from taskdeck_shared.schemas.realtime import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_TRY_AGAIN_LATER,
    INBOUND_MESSAGE_TYPES,
    ConnectionMessage,
    Frame,
    PingMessage,
    PongMessage,
)

router = APIRouter()
log = structlog.get_logger()


def parse_inbound(raw: Union[str, bytes, None]) -> Optional[Frame]:
    """
    Decode one client frame.

    Returns None for well-formed frames of a kind the server does not handle.
    Raises MalformedMessage for anything that is not a JSON object with a
    string ``type``, or a known kind with an invalid shape.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise MalformedMessage("Frame is not valid JSON")
    if not isinstance(data, dict):
        raise MalformedMessage("Frame is not a JSON object")

    kind = data.get("type")
    if not isinstance(kind, str):
        raise MalformedMessage("Frame has no type")

    model = INBOUND_MESSAGE_TYPES.get(kind)
    if model is None:
        log.warning("ws.unknown_message_type", type=kind)
        return None
    try:
        return model.model_validate(data)
    except ValidationError:
        raise MalformedMessage(f"Invalid {kind} frame")


async def _authenticate(
    websocket: WebSocket, validator: SessionValidator
) -> Optional[SessionIdentity]:
    """Validate the handshake. Closes the socket and returns None on failure."""
    settings = get_settings()
    try:
        return await asyncio.wait_for(
            validator.validate(
                websocket.headers.get("cookie"),
                websocket.headers.get("origin"),
            ),
            timeout=settings.ws_auth_timeout_seconds,
        )
    except AuthError as exc:
        log.info("ws.auth_rejected", reason=exc.reason)
        await websocket.close(code=exc.close_code, reason=exc.reason)
    except asyncio.TimeoutError:
        log.warning("ws.auth_timeout", timeout=settings.ws_auth_timeout_seconds)
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="auth_timeout")
    except (redis.RedisError, SQLAlchemyError, OSError) as exc:
        log.error("ws.session_store_failed", error=str(exc))
        await websocket.close(code=CLOSE_INTERNAL_ERROR, reason="session_store_unavailable")
    return None


@router.websocket("/ws")
async def realtime_endpoint(
    websocket: WebSocket,
    validator: SessionValidator = Depends(get_session_validator),
    registry: ConnectionRegistry = Depends(get_registry),
):
    await websocket.accept()

    identity = await _authenticate(websocket, validator)
    if identity is None:
        return

    connection = Connection(
        websocket,
        user_id=identity.user_id,
        organization_id=identity.organization_id,
        session_id=identity.session_id,
    )
    registry.add(identity.organization_id, connection)
    log.info(
        "ws.connected",
        user_id=str(identity.user_id),
        organization_id=str(identity.organization_id),
        connections=registry.count(),
    )

    try:
        await connection.send_frame(
            ConnectionMessage(
                user_id=identity.user_id,
                organization_id=identity.organization_id,
            )
        )
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            connection.touch()
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            frame = parse_inbound(raw)

            if isinstance(frame, PingMessage):
                await connection.send_frame(PongMessage())
    except MalformedMessage as exc:
        log.info("ws.bad_message", user_id=str(identity.user_id), error=str(exc))
        await connection.close(code=exc.close_code, reason=exc.reason)
    except WebSocketDisconnect:
        pass
    finally:
        registry.remove(connection)
        log.info(
            "ws.disconnected",
            user_id=str(identity.user_id),
            connections=registry.count(),
        )
