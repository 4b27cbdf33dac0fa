"""Task comment model."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class TaskComment(SQLModel, table=True):
    __tablename__ = "task_comments"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)
    task_id: uuid.UUID = Field(foreign_key="tasks.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    content: str = Field(nullable=False)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
