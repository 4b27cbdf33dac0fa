"""
Notification endpoints.

The polling fallback for clients without a live connection, plus read-state
management. Every query is scoped to the caller's own notifications.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query

from taskdeck.core.auth import get_current_identity, get_notification_store
from taskdeck.core.sessions import SessionIdentity
from taskdeck.services.stores import SqlNotificationStore
from taskdeck_shared.schemas.notifications import (
    NotificationList,
    NotificationRead,
    UnreadCount,
)

router = APIRouter()


@router.get("", response_model=NotificationList)
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    identity: SessionIdentity = Depends(get_current_identity),
    store: SqlNotificationStore = Depends(get_notification_store),
):
    items = await store.list_for_user(
        identity.user_id, identity.organization_id, unread_only=unread_only, limit=limit
    )
    unread = await store.unread_count(identity.user_id, identity.organization_id)
    return NotificationList(
        data=[NotificationRead.model_validate(n) for n in items],
        unread_count=unread,
    )


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    identity: SessionIdentity = Depends(get_current_identity),
    store: SqlNotificationStore = Depends(get_notification_store),
):
    count = await store.unread_count(identity.user_id, identity.organization_id)
    return UnreadCount(unread_count=count)


@router.patch("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: uuid.UUID,
    identity: SessionIdentity = Depends(get_current_identity),
    store: SqlNotificationStore = Depends(get_notification_store),
):
    notification = await store.mark_read(notification_id, identity.user_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return NotificationRead.model_validate(notification)


@router.post("/read-all")
async def mark_all_read(
    identity: SessionIdentity = Depends(get_current_identity),
    store: SqlNotificationStore = Depends(get_notification_store),
):
    updated = await store.mark_all_read(identity.user_id, identity.organization_id)
    return {"updated": updated}


@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: uuid.UUID,
    identity: SessionIdentity = Depends(get_current_identity),
    store: SqlNotificationStore = Depends(get_notification_store),
):
    if not await store.delete(notification_id, identity.user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
