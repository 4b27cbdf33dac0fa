"""
Registry of live, authenticated WebSocket connections.

Features:
- Connections grouped per organization; lookup by (organization, user)
- Multiple simultaneous connections per user (devices, tabs)
- Dead-connection cleanup when a send fails
- Heartbeat sweep closing connections that stopped pinging
- Session-scoped close (logout) and full teardown on shutdown

The registry lives on one event loop and is mutated only by connect and
disconnect paths, so its methods are synchronous and lock-free. Delivery
helpers snapshot their targets before awaiting any send. It only sees
connections accepted by this process.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Callable, Optional
from uuid import UUID

import structlog
from fastapi import WebSocket

from taskdeck_shared.schemas.realtime import CLOSE_GOING_AWAY, Frame

log = structlog.get_logger()

Clock = Callable[[], float]


class Connection:
    """One live WebSocket and the identity the server resolved for it."""

    __slots__ = (
        "websocket",
        "user_id",
        "organization_id",
        "session_id",
        "authenticated",
        "last_seen",
        "_clock",
    )

    def __init__(
        self,
        websocket: WebSocket,
        user_id: Optional[UUID] = None,
        organization_id: Optional[UUID] = None,
        session_id: Optional[str] = None,
        clock: Clock = time.monotonic,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.organization_id = organization_id
        self.session_id = session_id
        self.authenticated = user_id is not None and organization_id is not None
        self._clock = clock
        self.last_seen = clock()

    def touch(self) -> None:
        """Record inbound activity (any frame counts as a heartbeat)."""
        self.last_seen = self._clock()

    async def send_frame(self, frame: Frame) -> None:
        await self.websocket.send_text(json.dumps(frame.to_wire()))

    async def close(self, code: int, reason: str = "") -> None:
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as exc:
            # Already closed by the peer or the transport
            log.debug("ws.close_failed", user_id=str(self.user_id), error=str(exc))

    def __repr__(self) -> str:
        return (
            f"Connection(user_id={self.user_id}, organization_id={self.organization_id}, "
            f"authenticated={self.authenticated})"
        )


class ConnectionRegistry:
    """Organization → connections map owned by the notification subsystem."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        # organization_id -> set[Connection]
        self._connections: dict[UUID, set[Connection]] = {}
        # reverse index enforcing "at most one organization per connection"
        self._org_of: dict[Connection, UUID] = {}
        self._reaper: asyncio.Task | None = None

    @property
    def connections(self) -> dict[UUID, set[Connection]]:
        return self._connections

    # --- Membership ---

    def add(self, organization_id: UUID, connection: Connection) -> None:
        """Register an authenticated connection. Idempotent."""
        if not connection.authenticated:
            raise ValueError("Only authenticated connections can be registered")

        current = self._org_of.get(connection)
        if current == organization_id:
            return
        if current is not None:
            self.remove(connection)

        connection.organization_id = organization_id
        self._connections.setdefault(organization_id, set()).add(connection)
        self._org_of[connection] = organization_id

    def remove(self, connection: Connection) -> bool:
        """
        Drop a connection from whichever organization holds it.

        Safe to call repeatedly, and for connections that never finished
        authenticating. Returns whether anything was removed.
        """
        organization_id = self._org_of.pop(connection, None)
        if organization_id is None:
            return False
        members = self._connections.get(organization_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self._connections[organization_id]
        return True

    def connections_for_user(self, organization_id: UUID, user_id: UUID) -> list[Connection]:
        return [
            c
            for c in self._connections.get(organization_id, ())
            if c.authenticated and c.user_id == user_id
        ]

    def connections_in_org(self, organization_id: UUID) -> list[Connection]:
        return [c for c in self._connections.get(organization_id, ()) if c.authenticated]

    def count(self) -> int:
        return len(self._org_of)

    # --- Delivery ---

    async def send_to_user(self, organization_id: UUID, user_id: UUID, frame: Frame) -> int:
        """Push a frame to every connection of one user. Returns deliveries."""
        return await self._deliver(self.connections_for_user(organization_id, user_id), frame)

    async def broadcast_to_org(
        self,
        organization_id: UUID,
        frame: Frame,
        exclude_user: UUID | None = None,
    ) -> int:
        """Push a frame to all connections in an organization."""
        targets = [
            c
            for c in self.connections_in_org(organization_id)
            if exclude_user is None or c.user_id != exclude_user
        ]
        return await self._deliver(targets, frame)

    async def _deliver(self, targets: list[Connection], frame: Frame) -> int:
        if not targets:
            return 0

        text = json.dumps(frame.to_wire())
        delivered = 0
        dead: list[Connection] = []
        for connection in targets:
            try:
                await connection.websocket.send_text(text)
                delivered += 1
            except Exception as exc:
                log.info("ws.send_failed", user_id=str(connection.user_id), error=str(exc))
                dead.append(connection)

        for connection in dead:
            self.remove(connection)
        return delivered

    # --- Closing ---

    async def close_session(self, session_id: str, code: int, reason: str) -> int:
        """Close every connection opened under one session (e.g. on logout)."""
        to_close = [c for c in list(self._org_of) if c.session_id == session_id]
        for connection in to_close:
            self.remove(connection)
            await connection.close(code=code, reason=reason)
        return len(to_close)

    async def prune_stale(self, timeout: float, now: float | None = None) -> int:
        """Close connections with no inbound frame for longer than ``timeout``."""
        now = self._clock() if now is None else now
        stale = [c for c in list(self._org_of) if now - c.last_seen > timeout]
        for connection in stale:
            self.remove(connection)
            await connection.close(code=CLOSE_GOING_AWAY, reason="heartbeat_timeout")
        if stale:
            log.info("ws.pruned", count=len(stale), remaining=self.count())
        return len(stale)

    async def close_all(self, code: int = CLOSE_GOING_AWAY, reason: str = "server_shutdown") -> None:
        """Stop the heartbeat sweep and close every connection."""
        await self.stop_reaper()
        for connection in list(self._org_of):
            self.remove(connection)
            await connection.close(code=code, reason=reason)

    # --- Heartbeat sweep ---

    def start_reaper(self, interval: float, timeout: float) -> None:
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap_loop(interval, timeout))

    async def stop_reaper(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None

    async def _reap_loop(self, interval: float, timeout: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.prune_stale(timeout)
