"""Notification schemas (persisted records and their API views)."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, UUID4

from .common import NotificationType


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    user_id: UUID4
    organization_id: UUID4
    type: NotificationType
    title: str
    message: str
    is_read: bool = False
    task_id: Optional[UUID4] = None
    comment_id: Optional[UUID4] = None
    triggered_by_user_id: Optional[UUID4] = None
    created_at: datetime


class NotificationList(BaseModel):
    data: List[NotificationRead]
    unread_count: int


class UnreadCount(BaseModel):
    unread_count: int
