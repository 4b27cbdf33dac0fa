"""Task model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Task(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        sa.Index("ix_tasks_column_position", "organization_id", "status", "position"),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    title: str = Field(nullable=False, max_length=255)
    description: Optional[str] = None
    status: str = Field(nullable=False, default="todo")  # todo | in_progress | done
    priority: str = Field(nullable=False, default="medium")  # low | medium | high | critical
    category: Optional[str] = Field(default=None, max_length=100)
    position: str = Field(nullable=False, default="a0000001000")
    assignee_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id", index=True)
    creator_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    due_date: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    completed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
