"""User and authentication schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, UUID4

from .common import Role


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1)


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID4
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: Role
    organization_id: Optional[UUID4] = None
    is_active: bool = True
    created_at: datetime


class UserListResponse(BaseModel):
    data: List[UserRead]


class RoleUpdate(BaseModel):
    role: Role
