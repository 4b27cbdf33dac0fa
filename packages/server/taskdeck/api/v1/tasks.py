"""
Task endpoints: CRUD, drag-and-drop reorder, comments.

Status columns: To Do → In Progress → Done
- New tasks, and tasks moved to another column by an edit, go to the end of
  the column.
- Assignment, status and comment changes notify the people involved.
- Every change is broadcast to the organization as a ``task_changed`` frame.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException

from taskdeck.core.auth import (
    get_comment_store,
    get_current_identity,
    get_dispatcher,
    get_registry,
    get_reorder_coordinator,
    get_task_store,
    get_user_store,
    require_manager,
)
from taskdeck.core.connections import ConnectionRegistry
from taskdeck.core.errors import (
    DispatchPersistenceFailure,
    PositionSpaceExhausted,
    ReorderConflict,
    TaskNotFound,
)
from taskdeck.core.ports import UserStore
from taskdeck.core.sessions import SessionIdentity
from taskdeck.models.base import utcnow
from taskdeck.models.task import Task
from taskdeck.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    TaskAssigned,
    TaskCommented,
    TaskStatusChanged,
)
from taskdeck.services.stores import SqlCommentStore, SqlTaskStore
from taskdeck.services.tasks import ReorderCoordinator, append_position, status_fields
from taskdeck_shared.schemas.common import Role, TaskStatus
from taskdeck_shared.schemas.realtime import TaskChangedMessage
from taskdeck_shared.schemas.tasks import (
    CommentCreate,
    CommentRead,
    TaskCreate,
    TaskList,
    TaskRead,
    TaskReorder,
    TaskStats,
    TaskUpdate,
)

log = structlog.get_logger()
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_task_or_404(
    tasks: SqlTaskStore, task_id: uuid.UUID, organization_id: uuid.UUID
) -> Task:
    task = await tasks.get_by_id(task_id)
    if not task or task.organization_id != organization_id:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


async def _check_assignee(
    users: UserStore, assignee_id: uuid.UUID, organization_id: uuid.UUID
) -> None:
    assignee = await users.get_by_id(assignee_id)
    if not assignee or assignee.organization_id != organization_id:
        raise HTTPException(status_code=400, detail="Assignee not found in your organization")


async def _notify(dispatcher: NotificationDispatcher, event: NotificationEvent) -> None:
    # The task change is already committed; a lost notification must not undo it
    try:
        await dispatcher.dispatch(event)
    except DispatchPersistenceFailure as exc:
        log.error(
            "tasks.notification_failed",
            event_type=type(event).__name__,
            task_id=str(event.task_id),
            error=str(exc),
        )


async def _broadcast(
    registry: ConnectionRegistry,
    organization_id: uuid.UUID,
    action: str,
    task_id: uuid.UUID,
    status: Optional[str] = None,
) -> None:
    await registry.broadcast_to_org(
        organization_id,
        TaskChangedMessage(action=action, task_id=task_id, status=status),
    )


def _can_edit(identity: SessionIdentity, task: Task) -> bool:
    return (
        identity.user.role in (Role.ADMIN.value, Role.MANAGER.value)
        or task.assignee_id == identity.user_id
        or task.creator_id == identity.user_id
    )


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------


@router.get("", response_model=TaskList)
async def list_tasks_endpoint(
    status: Optional[TaskStatus] = None,
    assignee_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    identity: SessionIdentity = Depends(get_current_identity),
    tasks: SqlTaskStore = Depends(get_task_store),
):
    """List tasks ordered by column, then position within the column."""
    rows = await tasks.list_for_org(
        identity.organization_id,
        status=status.value if status else None,
        assignee_id=assignee_id,
        search=search,
    )
    return TaskList(data=[TaskRead.model_validate(t) for t in rows])


@router.get("/stats", response_model=TaskStats)
async def task_stats_endpoint(
    identity: SessionIdentity = Depends(get_current_identity),
    tasks: SqlTaskStore = Depends(get_task_store),
):
    return TaskStats(**await tasks.stats(identity.organization_id))


@router.get("/{task_id}", response_model=TaskRead)
async def get_task_endpoint(
    task_id: uuid.UUID,
    identity: SessionIdentity = Depends(get_current_identity),
    tasks: SqlTaskStore = Depends(get_task_store),
):
    task = await get_task_or_404(tasks, task_id, identity.organization_id)
    return TaskRead.model_validate(task)


@router.post("", response_model=TaskRead, status_code=201)
async def create_task_endpoint(
    body: TaskCreate,
    identity: SessionIdentity = Depends(require_manager),
    tasks: SqlTaskStore = Depends(get_task_store),
    users: UserStore = Depends(get_user_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Create a task at the end of its column. Managers and admins only."""
    if body.assignee_id:
        await _check_assignee(users, body.assignee_id, identity.organization_id)

    position = await append_position(tasks, identity.organization_id, body.status.value)
    task = await tasks.create(
        Task(
            organization_id=identity.organization_id,
            title=body.title,
            description=body.description,
            status=body.status.value,
            priority=body.priority.value,
            category=body.category,
            due_date=body.due_date,
            position=position,
            assignee_id=body.assignee_id,
            creator_id=identity.user_id,
            completed_at=utcnow() if body.status == TaskStatus.DONE else None,
        )
    )
    result = TaskRead.model_validate(task)
    log.info("tasks.created", task_id=str(result.id), status=result.status.value)

    if result.assignee_id:
        await _notify(
            dispatcher,
            TaskAssigned(
                task_id=result.id,
                assignee_id=result.assignee_id,
                actor_id=identity.user_id,
                organization_id=identity.organization_id,
            ),
        )
    await _broadcast(registry, identity.organization_id, "created", result.id, result.status.value)
    return result


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task_endpoint(
    task_id: uuid.UUID,
    body: TaskUpdate,
    identity: SessionIdentity = Depends(get_current_identity),
    tasks: SqlTaskStore = Depends(get_task_store),
    users: UserStore = Depends(get_user_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Update whitelisted fields. Admins, managers, the assignee or the creator."""
    task = await get_task_or_404(tasks, task_id, identity.organization_id)
    if not _can_edit(identity, task):
        raise HTTPException(status_code=403, detail="Cannot update this task")

    data = body.model_dump(exclude_unset=True, mode="json")
    old_status = task.status
    old_assignee = task.assignee_id

    new_assignee = body.assignee_id if "assignee_id" in data else old_assignee
    if new_assignee and new_assignee != old_assignee:
        await _check_assignee(users, new_assignee, identity.organization_id)

    fields = {
        k: v
        for k, v in data.items()
        if k not in ("status", "assignee_id", "due_date")
        and not (v is None and k in ("title", "priority"))
    }
    if "assignee_id" in data:
        fields["assignee_id"] = body.assignee_id
    if "due_date" in data:
        fields["due_date"] = body.due_date

    new_status = data.get("status") or old_status
    if new_status != old_status:
        fields.update(status_fields(old_status, new_status))
        fields["position"] = await append_position(
            tasks, identity.organization_id, new_status, exclude=task.id
        )

    updated = await tasks.update(task_id, fields)
    result = TaskRead.model_validate(updated)
    log.info("tasks.updated", task_id=str(task_id), fields=sorted(fields))

    if new_assignee and new_assignee != old_assignee:
        await _notify(
            dispatcher,
            TaskAssigned(
                task_id=task_id,
                assignee_id=new_assignee,
                actor_id=identity.user_id,
                organization_id=identity.organization_id,
            ),
        )
    if new_status != old_status:
        await _notify(
            dispatcher,
            TaskStatusChanged(
                task_id=task_id,
                new_status=new_status,
                actor_id=identity.user_id,
                organization_id=identity.organization_id,
            ),
        )
    await _broadcast(registry, identity.organization_id, "updated", task_id, result.status.value)
    return result


@router.delete("/{task_id}")
async def delete_task_endpoint(
    task_id: uuid.UUID,
    identity: SessionIdentity = Depends(require_manager),
    tasks: SqlTaskStore = Depends(get_task_store),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Delete a task with its comments and notifications. Managers and admins only."""
    task = await get_task_or_404(tasks, task_id, identity.organization_id)
    status = task.status
    await tasks.delete(task_id)
    await _broadcast(registry, identity.organization_id, "deleted", task_id, status)
    return {"message": "Task deleted successfully"}


# ---------------------------------------------------------------------------
# Drag-and-drop
# ---------------------------------------------------------------------------


@router.patch("/{task_id}/reorder", response_model=TaskRead)
async def reorder_task_endpoint(
    task_id: uuid.UUID,
    body: TaskReorder,
    identity: SessionIdentity = Depends(get_current_identity),
    tasks: SqlTaskStore = Depends(get_task_store),
    coordinator: ReorderCoordinator = Depends(get_reorder_coordinator),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    registry: ConnectionRegistry = Depends(get_registry),
):
    """Move a task between two neighbors, optionally into another column."""
    task = await get_task_or_404(tasks, task_id, identity.organization_id)
    if not _can_edit(identity, task):
        raise HTTPException(status_code=403, detail="Cannot move this task")
    old_status = task.status

    try:
        updated = await coordinator.reorder(task_id, body, identity.organization_id)
    except TaskNotFound:
        raise HTTPException(status_code=404, detail="Task not found")
    except (ReorderConflict, PositionSpaceExhausted) as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    result = TaskRead.model_validate(updated)
    if result.status.value != old_status:
        await _notify(
            dispatcher,
            TaskStatusChanged(
                task_id=task_id,
                new_status=result.status.value,
                actor_id=identity.user_id,
                organization_id=identity.organization_id,
            ),
        )
    await _broadcast(registry, identity.organization_id, "reordered", task_id, result.status.value)
    return result


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


@router.get("/{task_id}/comments", response_model=list[CommentRead])
async def list_comments_endpoint(
    task_id: uuid.UUID,
    identity: SessionIdentity = Depends(get_current_identity),
    tasks: SqlTaskStore = Depends(get_task_store),
    comments: SqlCommentStore = Depends(get_comment_store),
):
    await get_task_or_404(tasks, task_id, identity.organization_id)
    return [CommentRead.model_validate(c) for c in await comments.list_for_task(task_id)]


@router.post("/{task_id}/comments", response_model=CommentRead, status_code=201)
async def add_comment_endpoint(
    task_id: uuid.UUID,
    body: CommentCreate,
    identity: SessionIdentity = Depends(get_current_identity),
    tasks: SqlTaskStore = Depends(get_task_store),
    comments: SqlCommentStore = Depends(get_comment_store),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Add a comment; notifies the assignee and anyone @mentioned."""
    await get_task_or_404(tasks, task_id, identity.organization_id)
    comment = await comments.create(task_id, identity.user_id, body.content)
    result = CommentRead.model_validate(comment)

    await _notify(
        dispatcher,
        TaskCommented(
            task_id=task_id,
            comment_text=result.content,
            actor_id=identity.user_id,
            organization_id=identity.organization_id,
            comment_id=result.id,
        ),
    )
    return result
