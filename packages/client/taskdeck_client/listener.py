"""
Real-time notification listener for a Taskdeck server.

Maintains one WebSocket connection with:
- Email/password login over HTTP to obtain the session cookie
- Reconnection driven by ConnectionStateMachine (exponential backoff,
  bounded attempts, no retry after an authentication rejection)
- Application-level ping every ``heartbeat_interval_seconds``
- Dispatch of notification and task_changed frames to registered handlers
- Graceful shutdown support
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Optional

import aiohttp
import httpx
import structlog
from pydantic import ValidationError

from taskdeck_shared.schemas.realtime import (
    CLOSE_AUTH_REQUIRED,
    CLOSE_NORMAL,
    ConnectionMessage,
    NotificationMessage,
    PingMessage,
    PongMessage,
    TaskChangedMessage,
    parse_outbound,
)

from .config import ListenerConfig
from .machine import ConnectionState, ConnectionStateMachine, InvalidTransition
from .metrics import MetricsCollector

log = structlog.get_logger()

NotificationHandler = Callable[[NotificationMessage], Coroutine[Any, Any, None]]
TaskChangedHandler = Callable[[TaskChangedMessage], Coroutine[Any, Any, None]]


class LoginFailed(Exception):
    """The server rejected the configured credentials."""


class NotificationListener:
    """
    Persistent real-time connection to a Taskdeck server.

    ``run()`` returns once the state machine stops: DISCONNECTED after
    ``stop()``, FAILED after an authentication rejection or once the reconnect
    budget is spent.
    """

    def __init__(
        self,
        config: ListenerConfig,
        metrics: MetricsCollector | None = None,
        machine: ConnectionStateMachine | None = None,
    ):
        self._config = config
        self._metrics = metrics or MetricsCollector()
        self.machine = machine or ConnectionStateMachine(config.reconnect.policy())

        self._notification_handlers: list[NotificationHandler] = []
        self._task_handlers: list[TaskChangedHandler] = []
        self._cookie_header: Optional[str] = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    def on_notification(self, handler: NotificationHandler) -> None:
        """Register a notification handler."""
        self._notification_handlers.append(handler)

    def on_task_changed(self, handler: TaskChangedHandler) -> None:
        self._task_handlers.append(handler)

    # --- Lifecycle ---

    async def start(self) -> asyncio.Task:
        """Start the listener loop in the background."""
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Close the connection with 1000 and stop reconnecting."""
        self.machine.stop()
        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=CLOSE_NORMAL, message=b"client_stop")
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._metrics.set_gauge("connected", 0)
        log.info("listener.stopped", state=self.machine.state.value)

    async def run(self) -> ConnectionState:
        while True:
            try:
                self.machine.connect()
            except InvalidTransition:
                break
            self._metrics.inc("connect_attempts_total")

            try:
                code, reason = await self._run_connection()
            except asyncio.CancelledError:
                if self.machine.state in (
                    ConnectionState.CONNECTING,
                    ConnectionState.AUTHENTICATED,
                ):
                    self.machine.closed(CLOSE_NORMAL, "client_stop")
                raise
            self._metrics.set_gauge("connected", 0)

            delay = self.machine.closed(code, reason)
            if delay is None:
                log.info(
                    "listener.finished",
                    state=self.machine.state.value,
                    close_code=code,
                    reason=self.machine.failure_reason or reason,
                )
                break

            self._metrics.inc("reconnects_total")
            log.info(
                "listener.reconnecting",
                delay=delay,
                attempt=self.machine.attempt,
                close_code=code,
            )
            await asyncio.sleep(delay)

        return self.machine.state

    # --- Connection ---

    async def login(self) -> str:
        """Log in over HTTP and return the ``Cookie`` header for the socket."""
        server = self._config.server
        password = self._config.credentials.password
        if not password:
            raise LoginFailed(
                f"Password env var {self._config.credentials.password_env} is not set"
            )

        async with httpx.AsyncClient(
            base_url=server.url.rstrip("/"),
            verify=server.verify_tls,
            timeout=server.request_timeout_seconds,
        ) as client:
            response = await client.post(
                "/api/auth/login",
                json={"email": self._config.credentials.email, "password": password},
            )
            if response.status_code == 401:
                raise LoginFailed("Invalid email or password")
            response.raise_for_status()

        cookies = [f"{name}={value}" for name, value in response.cookies.items()]
        if not cookies:
            raise LoginFailed("Login response carried no session cookie")
        log.info("listener.logged_in", email=self._config.credentials.email)
        return "; ".join(cookies)

    async def _run_connection(self) -> tuple[Optional[int], str]:
        """One connect-and-receive cycle. Returns (close code, reason)."""
        try:
            if self._cookie_header is None:
                self._cookie_header = await self.login()
        except LoginFailed as exc:
            log.error("listener.login_failed", error=str(exc))
            return CLOSE_AUTH_REQUIRED, "login_failed"
        except httpx.HTTPError as exc:
            log.warning("listener.login_error", error=str(exc))
            return None, str(exc)

        server = self._config.server
        try:
            async with aiohttp.ClientSession(
                headers={"Cookie": self._cookie_header},
                timeout=aiohttp.ClientTimeout(connect=server.request_timeout_seconds),
            ) as session:
                async with session.ws_connect(server.ws_url, ssl=server.verify_tls) as ws:
                    return await self._receive_loop(ws)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            log.warning("listener.connection_lost", error=str(exc))
            return None, str(exc)

    async def _receive_loop(
        self, ws: aiohttp.ClientWebSocketResponse
    ) -> tuple[Optional[int], str]:
        self._ws = ws
        pinger = asyncio.create_task(self._ping_loop(ws))
        reason = ""
        try:
            while True:
                msg = await ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_frame(msg.data)
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    reason = msg.extra or ""
                    break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = str(ws.exception() or "")
                    break
        finally:
            pinger.cancel()
            try:
                await pinger
            except asyncio.CancelledError:
                pass
            self._ws = None

        code = ws.close_code
        if code == CLOSE_AUTH_REQUIRED:
            # The session is gone; a later reset() must log in again
            self._cookie_header = None
        log.info("listener.closed", close_code=code, reason=reason)
        return code, reason

    async def _ping_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        interval = self._config.heartbeat_interval_seconds
        while not ws.closed:
            await asyncio.sleep(interval)
            if ws.closed:
                break
            await ws.send_json(PingMessage().to_wire())

    # --- Frames ---

    async def _handle_frame(self, raw: str) -> None:
        try:
            frame = parse_outbound(raw)
        except ValidationError as exc:
            self._metrics.inc("frames_invalid_total")
            log.warning("listener.parse_error", error=str(exc), data=raw[:200])
            return

        if isinstance(frame, ConnectionMessage):
            if self.machine.state is ConnectionState.CONNECTING:
                self.machine.authenticated()
            self._metrics.set_gauge("connected", 1)
            log.info(
                "listener.connected",
                user_id=str(frame.user_id),
                organization_id=str(frame.organization_id),
            )
        elif isinstance(frame, NotificationMessage):
            self._metrics.inc("notifications_total")
            await self._run_handlers(self._notification_handlers, frame)
        elif isinstance(frame, TaskChangedMessage):
            self._metrics.inc("task_changes_total")
            await self._run_handlers(self._task_handlers, frame)
        elif isinstance(frame, PongMessage):
            self._metrics.inc("pongs_total")

    async def _run_handlers(self, handlers: list, frame: Any) -> None:
        for handler in handlers:
            try:
                await handler(frame)
            except Exception:
                self._metrics.inc("handler_errors_total")
                log.exception("listener.handler_error", frame_type=frame.type)
