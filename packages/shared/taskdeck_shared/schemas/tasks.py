"""Task-related Pydantic schemas for shared use across server and client."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import UUID4

from .common import TaskPriority, TaskStatus


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

class TaskBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    category: Optional[str] = Field(default=None, max_length=100)
    due_date: Optional[datetime] = None


class TaskCreate(TaskBase):
    status: TaskStatus = TaskStatus.TODO
    assignee_id: Optional[UUID4] = None


class TaskUpdate(BaseModel):
    """Whitelisted fields for PATCH /tasks/{task_id}."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    category: Optional[str] = Field(default=None, max_length=100)
    assignee_id: Optional[UUID4] = None
    due_date: Optional[datetime] = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    organization_id: UUID4
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    category: Optional[str] = None
    position: str
    assignee_id: Optional[UUID4] = None
    creator_id: UUID4
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Drag-and-drop reorder
# ---------------------------------------------------------------------------

class TaskReorder(BaseModel):
    """
    Request body for PATCH /tasks/{task_id}/reorder.

    The client sends the position keys of the two tasks the dragged task now
    sits between in its locally sorted view. Either may be omitted when the
    task was dropped at the start or the end of the column.
    """
    status: Optional[TaskStatus] = None
    before_position: Optional[str] = None
    after_position: Optional[str] = None


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)


class CommentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    task_id: UUID4
    user_id: UUID4
    content: str
    created_at: datetime


class TaskList(BaseModel):
    data: List[TaskRead]


class TaskStats(BaseModel):
    total: int
    todo: int
    in_progress: int
    done: int
    overdue: int
