"""
Real-time WebSocket frame schemas.

Every frame is a JSON object with a ``type`` discriminator. Outbound frames
(server → client) form a discriminated union so the client can parse any
server frame with one call; inbound frames (client → server) are looked up by
type so unknown kinds can be ignored without failing the connection.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, UUID4

from .notifications import NotificationRead


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Inbound (client → server)
# ---------------------------------------------------------------------------

class PingMessage(Frame):
    type: Literal["ping"] = "ping"


INBOUND_MESSAGE_TYPES: dict[str, type[Frame]] = {
    "ping": PingMessage,
}


# ---------------------------------------------------------------------------
# Outbound (server → client)
# ---------------------------------------------------------------------------

class ConnectionMessage(Frame):
    """Sent once, immediately after a successful handshake."""
    type: Literal["connection"] = "connection"
    status: Literal["authenticated"] = "authenticated"
    user_id: UUID4 = Field(alias="userId")
    organization_id: UUID4 = Field(alias="organizationId")
    timestamp: datetime = Field(default_factory=_utcnow)


class NotificationMessage(Frame):
    type: Literal["notification"] = "notification"
    notification: NotificationRead
    timestamp: datetime = Field(default_factory=_utcnow)


class PongMessage(Frame):
    type: Literal["pong"] = "pong"
    timestamp: datetime = Field(default_factory=_utcnow)


class TaskChangedMessage(Frame):
    """Broadcast to an organization so open boards can refresh a task."""
    type: Literal["task_changed"] = "task_changed"
    action: Literal["created", "updated", "reordered", "deleted"]
    task_id: UUID4 = Field(alias="taskId")
    status: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


OutboundMessage = Annotated[
    Union[ConnectionMessage, NotificationMessage, PongMessage, TaskChangedMessage],
    Field(discriminator="type"),
]

_outbound_adapter: TypeAdapter[OutboundMessage] = TypeAdapter(OutboundMessage)


def parse_outbound(raw: Union[str, bytes, dict]) -> OutboundMessage:
    """Parse a server frame. Raises pydantic.ValidationError on unknown kinds."""
    if isinstance(raw, dict):
        return _outbound_adapter.validate_python(raw)
    return _outbound_adapter.validate_json(raw)


# ---------------------------------------------------------------------------
# Close codes
# ---------------------------------------------------------------------------

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_BAD_MESSAGE = 1003
CLOSE_AUTH_REQUIRED = 1008
CLOSE_INTERNAL_ERROR = 1011
CLOSE_TRY_AGAIN_LATER = 1013

# Close codes after which reconnecting cannot succeed without a fresh login
TERMINAL_CLOSE_CODES = frozenset({CLOSE_AUTH_REQUIRED, CLOSE_INTERNAL_ERROR})
