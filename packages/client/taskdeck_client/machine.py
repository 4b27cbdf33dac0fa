"""
Reconnect state machine for the real-time connection.

Pure bookkeeping with no I/O: the listener reports what happened (connect
attempt, handshake result, close code) and the machine says what to do next.

    DISCONNECTED ──connect──▶ CONNECTING ──authenticated──▶ AUTHENTICATED
         ▲                        │                               │
         │ stop                   └──────────closed(code)─────────┤
         │                                                        ▼
         └──────────────── BACKOFF(attempt) ◀── retryable ── (decide)
                                                                  │
                                  FAILED ◀── terminal / attempts spent
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from taskdeck_shared.schemas.realtime import TERMINAL_CLOSE_CODES


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    BACKOFF = "backoff"
    FAILED = "failed"


class InvalidTransition(Exception):
    def __init__(self, state: ConnectionState, event: str):
        super().__init__(f"Cannot {event} while {state.value}")
        self.state = state
        self.event = event


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        """Backoff before reconnect number ``attempt + 1``."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


class ConnectionStateMachine:
    def __init__(self, policy: ReconnectPolicy | None = None):
        self.policy = policy or ReconnectPolicy()
        self.state = ConnectionState.DISCONNECTED
        self.attempt = 0
        self.last_close_code: Optional[int] = None
        self.failure_reason: Optional[str] = None
        self._stopping = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    def connect(self) -> None:
        if self._stopping or self.state not in (
            ConnectionState.DISCONNECTED,
            ConnectionState.BACKOFF,
        ):
            raise InvalidTransition(self.state, "connect")
        self.state = ConnectionState.CONNECTING

    def authenticated(self) -> None:
        if self.state is not ConnectionState.CONNECTING:
            raise InvalidTransition(self.state, "authenticate")
        self.state = ConnectionState.AUTHENTICATED
        self.attempt = 0
        self.failure_reason = None

    def closed(self, code: Optional[int], reason: str = "") -> Optional[float]:
        """
        Record a close (or a failed connect, with ``code=None``).

        Returns the delay before the next attempt, or None when the machine
        stopped in DISCONNECTED or FAILED.
        """
        if self.state not in (ConnectionState.CONNECTING, ConnectionState.AUTHENTICATED):
            raise InvalidTransition(self.state, "close")
        self.last_close_code = code

        if self._stopping:
            self.state = ConnectionState.DISCONNECTED
            return None
        if code in TERMINAL_CLOSE_CODES:
            self.state = ConnectionState.FAILED
            self.failure_reason = reason or f"close_code_{code}"
            return None
        if self.attempt >= self.policy.max_attempts:
            self.state = ConnectionState.FAILED
            self.failure_reason = "max_attempts_exceeded"
            return None

        delay = self.policy.delay_for(self.attempt)
        self.attempt += 1
        self.state = ConnectionState.BACKOFF
        return delay

    def stop(self) -> None:
        """Deliberate shutdown; the next close ends in DISCONNECTED."""
        self._stopping = True
        if self.state is ConnectionState.BACKOFF:
            self.state = ConnectionState.DISCONNECTED

    def reset(self) -> None:
        """Start over after FAILED, e.g. once the user has logged in again."""
        self.state = ConnectionState.DISCONNECTED
        self.attempt = 0
        self.last_close_code = None
        self.failure_reason = None
        self._stopping = False
