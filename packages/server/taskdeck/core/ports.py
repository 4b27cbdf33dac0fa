"""
Ports (interfaces) consumed by the real-time and ordering core.

The core depends on these Protocols instead of the SQLModel/Redis
implementations, so the dispatcher, validator and reorder coordinator can be
exercised with in-memory fakes.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol
from uuid import UUID

from taskdeck.models.notification import Notification
from taskdeck.models.task import Task
from taskdeck.models.user import User

SessionPayload = dict[str, Any]


class SessionStore(Protocol):
    """Shared key-value store of server-side sessions, keyed by session id."""

    async def get(self, session_id: str) -> Optional[SessionPayload]: ...

    async def create(self, user_id: UUID) -> str: ...

    async def delete(self, session_id: str) -> None: ...


class UserStore(Protocol):
    async def get_by_id(self, user_id: UUID) -> Optional[User]: ...

    async def get_by_email(self, email: str) -> Optional[User]: ...


class OrgMemberStore(Protocol):
    async def list_members(self, organization_id: UUID) -> list[User]: ...


class TaskStore(Protocol):
    async def get_by_id(self, task_id: UUID) -> Optional[Task]: ...

    async def update(
        self,
        task_id: UUID,
        fields: Mapping[str, Any],
        positions: Optional[Mapping[UUID, str]] = None,
    ) -> Task:
        """
        Apply ``fields`` to one task as a single atomic write.

        ``positions`` rewrites other tasks' keys in the same transaction.
        """
        ...

    async def list_column(self, organization_id: UUID, status: str) -> list[Task]:
        """Tasks of one status column, ordered by position."""
        ...

    async def update_positions(self, positions: Mapping[UUID, str]) -> None:
        """Rewrite the positions of several tasks in one transaction."""
        ...


class NotificationStore(Protocol):
    async def create(self, fields: Mapping[str, Any]) -> Notification: ...
