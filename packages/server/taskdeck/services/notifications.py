"""
Notification dispatch: persist one record per recipient, then push it live.

Handles:
- Task assignment, status change and comment events
- @mention resolution against organization members
- Delivery to every live connection of each recipient (best effort)

A recipient with no live connection still gets the persisted record and sees
it through the polling endpoints; a failed write is raised to the caller and
nothing is pushed for that recipient.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from taskdeck.core.connections import ConnectionRegistry
from taskdeck.core.errors import DispatchPersistenceFailure
from taskdeck.core.ports import NotificationStore, OrgMemberStore, TaskStore, UserStore
from taskdeck.models.notification import Notification
from taskdeck.models.task import Task
from taskdeck.models.user import User
from taskdeck_shared.schemas.common import STATUS_LABELS, NotificationType
from taskdeck_shared.schemas.notifications import NotificationRead
from taskdeck_shared.schemas.realtime import NotificationMessage

log = structlog.get_logger()

# @word or @"first last"
MENTION_PATTERN = re.compile(r'@(?:"([^"]+)"|(\w+))')


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaskAssigned:
    task_id: uuid.UUID
    assignee_id: uuid.UUID
    actor_id: uuid.UUID
    organization_id: uuid.UUID


@dataclass(frozen=True)
class TaskStatusChanged:
    task_id: uuid.UUID
    new_status: str
    actor_id: uuid.UUID
    organization_id: uuid.UUID


@dataclass(frozen=True)
class TaskCommented:
    task_id: uuid.UUID
    comment_text: str
    actor_id: uuid.UUID
    organization_id: uuid.UUID
    comment_id: Optional[uuid.UUID] = None


NotificationEvent = Union[TaskAssigned, TaskStatusChanged, TaskCommented]


@dataclass(frozen=True)
class _Recipient:
    user_id: uuid.UUID
    type: NotificationType
    title: str
    message: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def extract_mentions(text: str) -> list[str]:
    """Mention tokens in order of appearance, lowercased and de-duplicated."""
    seen: list[str] = []
    for quoted, word in MENTION_PATTERN.findall(text or ""):
        token = (quoted or word).strip().lower()
        if token and token not in seen:
            seen.append(token)
    return seen


def _matches(user: User, token: str) -> bool:
    full_name = " ".join(p for p in (user.first_name, user.last_name) if p).lower()
    email = (user.email or "").lower()
    return token in (full_name, email) or (bool(email) and email.split("@")[0] == token)


def resolve_mentions(tokens: list[str], members: list[User]) -> list[User]:
    """Map tokens to members. Unresolvable tokens are dropped."""
    resolved: list[User] = []
    for token in tokens:
        user = next((m for m in members if _matches(m, token)), None)
        if user is not None and user not in resolved:
            resolved.append(user)
    return resolved


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:
    def __init__(
        self,
        tasks: TaskStore,
        users: UserStore,
        members: OrgMemberStore,
        notifications: NotificationStore,
        registry: ConnectionRegistry,
    ):
        self._tasks = tasks
        self._users = users
        self._members = members
        self._notifications = notifications
        self._registry = registry

    async def dispatch(self, event: NotificationEvent) -> list[Notification]:
        """
        Persist and push the notifications an event produces.

        Returns the persisted records (empty when the event has no
        recipients). Raises DispatchPersistenceFailure when a record cannot be
        written and TypeError for unknown event types.
        """
        if not isinstance(event, (TaskAssigned, TaskStatusChanged, TaskCommented)):
            raise TypeError(f"Unsupported notification event: {type(event).__name__}")

        task = await self._tasks.get_by_id(event.task_id)
        actor = await self._users.get_by_id(event.actor_id)
        if task is None or actor is None or task.organization_id != event.organization_id:
            log.debug(
                "notifications.skipped",
                event_type=type(event).__name__,
                task_id=str(event.task_id),
                reason="task_or_actor_missing",
            )
            return []

        if isinstance(event, TaskAssigned):
            recipients = self._for_assignment(event, task, actor)
        elif isinstance(event, TaskStatusChanged):
            recipients = self._for_status_change(event, task, actor)
        else:
            recipients = await self._for_comment(event, task, actor)

        created: list[Notification] = []
        for recipient in recipients:
            notification = await self._persist(event, recipient)
            created.append(notification)
            await self._push(event.organization_id, notification)
        return created

    # --- Recipient resolution ---

    def _for_assignment(self, event: TaskAssigned, task: Task, actor: User) -> list[_Recipient]:
        if event.assignee_id == event.actor_id:
            return []
        return [
            _Recipient(
                user_id=event.assignee_id,
                type=NotificationType.TASK_ASSIGNED,
                title="New task assigned",
                message=f'{actor.display_name} assigned you to "{task.title}"',
            )
        ]

    def _for_status_change(
        self, event: TaskStatusChanged, task: Task, actor: User
    ) -> list[_Recipient]:
        if task.assignee_id is None or task.assignee_id == event.actor_id:
            return []
        return [
            _Recipient(
                user_id=task.assignee_id,
                type=NotificationType.TASK_STATUS_CHANGED,
                title="Task status updated",
                message=(
                    f'{actor.display_name} moved "{task.title}" '
                    f"to {status_label(event.new_status)}"
                ),
            )
        ]

    async def _for_comment(
        self, event: TaskCommented, task: Task, actor: User
    ) -> list[_Recipient]:
        recipients: list[_Recipient] = []

        mentioned: list[User] = []
        tokens = extract_mentions(event.comment_text)
        if tokens:
            members = await self._members.list_members(event.organization_id)
            mentioned = [u for u in resolve_mentions(tokens, members) if u.id != event.actor_id]
        mentioned_ids = {u.id for u in mentioned}

        # A mentioned assignee gets the mention only
        if (
            task.assignee_id is not None
            and task.assignee_id != event.actor_id
            and task.assignee_id not in mentioned_ids
        ):
            recipients.append(
                _Recipient(
                    user_id=task.assignee_id,
                    type=NotificationType.TASK_COMMENT,
                    title="New comment on your task",
                    message=f'{actor.display_name} commented on "{task.title}"',
                )
            )

        for user in mentioned:
            recipients.append(
                _Recipient(
                    user_id=user.id,
                    type=NotificationType.MENTION,
                    title="You were mentioned",
                    message=f'{actor.display_name} mentioned you in "{task.title}"',
                )
            )
        return recipients

    # --- Persist, then push ---

    async def _persist(self, event: NotificationEvent, recipient: _Recipient) -> Notification:
        fields = {
            "user_id": recipient.user_id,
            "organization_id": event.organization_id,
            "type": recipient.type.value,
            "title": recipient.title,
            "message": recipient.message,
            "task_id": event.task_id,
            "comment_id": getattr(event, "comment_id", None),
            "triggered_by_user_id": event.actor_id,
        }
        try:
            notification = await self._notifications.create(fields)
        except Exception as exc:
            log.error(
                "notifications.persist_failed",
                user_id=str(recipient.user_id),
                type=recipient.type.value,
                error=str(exc),
            )
            raise DispatchPersistenceFailure(
                f"Could not store {recipient.type.value} notification"
            ) from exc

        log.info(
            "notifications.persisted",
            notification_id=str(notification.id),
            user_id=str(recipient.user_id),
            type=recipient.type.value,
        )
        return notification

    async def _push(self, organization_id: uuid.UUID, notification: Notification) -> None:
        frame = NotificationMessage(notification=NotificationRead.model_validate(notification))
        delivered = await self._registry.send_to_user(
            organization_id, notification.user_id, frame
        )
        log.debug(
            "notifications.pushed",
            notification_id=str(notification.id),
            user_id=str(notification.user_id),
            connections=delivered,
        )
