from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

AppRole = Literal["admin", "manager", "closer", "sdr"]


class CreateUserRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str = Field(min_length=1, validation_alias="fullName")
    role: AppRole

    model_config = ConfigDict(populate_by_name=True)


class UpdateUserRoleRequest(BaseModel):
    role: AppRole


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    full_name: str
    role: AppRole | None
    created_at: datetime


class CreateUserResponse(BaseModel):
    success: bool
    user: UserRead
