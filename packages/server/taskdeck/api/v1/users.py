"""Organization member endpoints (mention autocomplete, assignee pickers, roles)."""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException

from taskdeck.core.auth import get_current_identity, get_user_store, require_roles
from taskdeck.core.ports import OrgMemberStore
from taskdeck.core.sessions import SessionIdentity
from taskdeck.services.stores import SqlUserStore
from taskdeck_shared.schemas.common import Role
from taskdeck_shared.schemas.users import RoleUpdate, UserListResponse, UserRead

log = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=UserListResponse)
async def list_members(
    identity: SessionIdentity = Depends(get_current_identity),
    members: OrgMemberStore = Depends(get_user_store),
):
    users = await members.list_members(identity.organization_id)
    return UserListResponse(data=[UserRead.model_validate(u) for u in users])


@router.patch("/{user_id}/role", response_model=UserRead)
async def update_role(
    user_id: uuid.UUID,
    body: RoleUpdate,
    identity: SessionIdentity = Depends(require_roles(Role.ADMIN)),
    users: SqlUserStore = Depends(get_user_store),
):
    """Change a member's role. Admins only, and only within their organization."""
    target = await users.get_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    if target.organization_id != identity.organization_id:
        raise HTTPException(status_code=403, detail="Cannot modify users from other organizations")

    updated = await users.update_role(user_id, body.role.value)
    log.info("users.role_changed", user_id=str(user_id), role=body.role.value)
    return UserRead.model_validate(updated)
