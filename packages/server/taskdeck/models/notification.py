"""Notification model (immutable except for is_read)."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    type: str = Field(nullable=False, max_length=50)  # task_assigned | task_status_changed | task_comment | mention
    title: str = Field(nullable=False, max_length=255)
    message: str = Field(nullable=False)
    is_read: bool = Field(default=False, nullable=False)
    task_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tasks.id")
    comment_id: Optional[uuid.UUID] = Field(default=None, foreign_key="task_comments.id")
    triggered_by_user_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
