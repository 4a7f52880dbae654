from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from callbook.crm.schemas import CallRead
from callbook.reporting.schemas import UserCallStatsRead


Role = Literal["admin", "telecaller"]


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    username: str = Field(min_length=3, max_length=64)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    role: Role = "telecaller"
    phone: str = Field(default="", max_length=20)


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    role: Role | None = None
    phone: str | None = Field(default=None, max_length=20)
    current_password: str | None = None
    new_password: str | None = Field(default=None, min_length=6, max_length=128)


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=20)
    current_password: str | None = None
    new_password: str | None = Field(default=None, min_length=6, max_length=128)


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    username: str
    email: str
    role: Role
    phone: str
    created_at: datetime
    last_active_at: datetime | None


class TelecallerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    username: str
    email: str
    phone: str


class ProfileRead(BaseModel):
    user: UserRead
    stats: UserCallStatsRead
    recent_activity: list[CallRead]
