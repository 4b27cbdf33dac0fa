"""
SQLModel implementations of the core ports.

Each write that other components observe (task updates, position rewrites,
notification records) commits before returning, so a notification pushed
over the real-time channel always refers to a committed row.
"""

from __future__ import annotations

import uuid
from typing import Any, Mapping, Optional

import structlog
from sqlalchemy import delete, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from taskdeck.core.errors import TaskNotFound
from taskdeck.models.base import utcnow
from taskdeck.models.comment import TaskComment
from taskdeck.models.notification import Notification
from taskdeck.models.task import Task
from taskdeck.models.user import User

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class SqlUserStore:
    """
    UserStore and OrgMemberStore over short-lived sessions.

    Takes a session factory instead of a session so a long-lived WebSocket
    handler never holds a database connection between lookups.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User).where(func.lower(User.email) == email.strip().lower())
            )
            return result.scalars().first()

    async def list_members(self, organization_id: uuid.UUID) -> list[User]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User)
                .where(User.organization_id == organization_id, User.is_active == True)  # noqa: E712
                .order_by(User.first_name, User.last_name, User.email)
            )
            return list(result.scalars().all())

    async def update_role(self, user_id: uuid.UUID, role: str) -> Optional[User]:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            user.role = role
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class SqlTaskStore:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, task_id: uuid.UUID) -> Optional[Task]:
        return await self._session.get(Task, task_id)

    async def update(
        self,
        task_id: uuid.UUID,
        fields: Mapping[str, Any],
        positions: Optional[Mapping[uuid.UUID, str]] = None,
    ) -> Task:
        task = await self.get_by_id(task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} not found")
        try:
            for other_id, position in (positions or {}).items():
                other = await self._session.get(Task, other_id)
                if other is not None and other.id != task_id:
                    other.position = position
                    self._session.add(other)
            for key, value in fields.items():
                setattr(task, key, value)
            self._session.add(task)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
        await self._session.refresh(task)
        return task

    async def list_column(self, organization_id: uuid.UUID, status: str) -> list[Task]:
        result = await self._session.execute(
            select(Task)
            .where(Task.organization_id == organization_id, Task.status == status)
            .order_by(Task.position, Task.created_at)
        )
        return list(result.scalars().all())

    async def update_positions(self, positions: Mapping[uuid.UUID, str]) -> None:
        if not positions:
            return
        try:
            for task_id, position in positions.items():
                task = await self._session.get(Task, task_id)
                if task is not None:
                    task.position = position
                    self._session.add(task)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

    async def create(self, task: Task) -> Task:
        self._session.add(task)
        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
        await self._session.refresh(task)
        return task

    async def list_for_org(
        self,
        organization_id: uuid.UUID,
        status: Optional[str] = None,
        assignee_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        query = select(Task).where(Task.organization_id == organization_id)
        if status:
            query = query.where(Task.status == status)
        if assignee_id:
            query = query.where(Task.assignee_id == assignee_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(Task.title.ilike(pattern), Task.description.ilike(pattern))
            )
        result = await self._session.execute(query.order_by(Task.status, Task.position))
        return list(result.scalars().all())

    async def stats(self, organization_id: uuid.UUID) -> dict[str, int]:
        """Per-column counts plus open tasks past their due date."""
        result = await self._session.execute(
            select(Task.status, func.count())
            .where(Task.organization_id == organization_id)
            .group_by(Task.status)
        )
        by_status = {status: n for status, n in result.all()}
        overdue = await self._session.execute(
            select(func.count()).select_from(Task).where(
                Task.organization_id == organization_id,
                Task.status != "done",
                Task.due_date.is_not(None),
                Task.due_date < utcnow(),
            )
        )
        return {
            "total": sum(by_status.values()),
            "todo": by_status.get("todo", 0),
            "in_progress": by_status.get("in_progress", 0),
            "done": by_status.get("done", 0),
            "overdue": overdue.scalar_one(),
        }

    async def delete(self, task_id: uuid.UUID) -> None:
        """Delete a task with its comments and the notifications about it."""
        try:
            await self._session.execute(
                delete(Notification).where(Notification.task_id == task_id)
            )
            await self._session.execute(
                delete(TaskComment).where(TaskComment.task_id == task_id)
            )
            await self._session.execute(delete(Task).where(Task.id == task_id))
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
        log.info("tasks.deleted", task_id=str(task_id))


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

class SqlCommentStore:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_for_task(self, task_id: uuid.UUID) -> list[TaskComment]:
        result = await self._session.execute(
            select(TaskComment)
            .where(TaskComment.task_id == task_id)
            .order_by(TaskComment.created_at)
        )
        return list(result.scalars().all())

    async def create(self, task_id: uuid.UUID, user_id: uuid.UUID, content: str) -> TaskComment:
        comment = TaskComment(task_id=task_id, user_id=user_id, content=content)
        self._session.add(comment)
        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
        await self._session.refresh(comment)
        return comment


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class SqlNotificationStore:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, fields: Mapping[str, Any]) -> Notification:
        notification = Notification(**fields)
        self._session.add(notification)
        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
        await self._session.refresh(notification)
        return notification

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        organization_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        query = select(Notification).where(
            Notification.user_id == user_id,
            Notification.organization_id == organization_id,
        )
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        result = await self._session.execute(
            query.order_by(Notification.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def unread_count(self, user_id: uuid.UUID, organization_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(Notification).where(
                Notification.user_id == user_id,
                Notification.organization_id == organization_id,
                Notification.is_read == False,  # noqa: E712
            )
        )
        return result.scalar_one()

    async def _owned(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Notification]:
        notification = await self._session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            return None
        return notification

    async def mark_read(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Notification]:
        """Mark one of the user's notifications read. None when not found."""
        notification = await self._owned(notification_id, user_id)
        if notification is None:
            return None
        notification.is_read = True
        self._session.add(notification)
        await self._session.commit()
        await self._session.refresh(notification)
        return notification

    async def mark_all_read(self, user_id: uuid.UUID, organization_id: uuid.UUID) -> int:
        result = await self._session.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.organization_id == organization_id,
                Notification.is_read == False,  # noqa: E712
            )
            .values(is_read=True)
        )
        await self._session.commit()
        return result.rowcount or 0

    async def delete(self, notification_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        notification = await self._owned(notification_id, user_id)
        if notification is None:
            return False
        await self._session.delete(notification)
        await self._session.commit()
        return True
