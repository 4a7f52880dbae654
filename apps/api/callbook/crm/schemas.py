from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from callbook.crm.enums import CallStatus, ConnectedResponse, LeadSource, LeadStatus, NotConnectedReason
from callbook.crm.state_machine import CallOutcome, Connected, NotConnected


LeadSortField = Literal["created_at", "updated_at", "name", "company", "status", "source"]


class UserRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    username: str


class LeadRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    company: str | None
    phone: str
    email: str | None


class LeadCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=1, max_length=20)
    address: str = Field(min_length=1)
    company: str | None = Field(default=None, max_length=100)
    email: EmailStr | None = None
    source: LeadSource = LeadSource.OTHER
    status: LeadStatus = LeadStatus.NEW
    notes: str | None = None


class LeadUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = Field(default=None, min_length=1, max_length=20)
    address: str | None = Field(default=None, min_length=1)
    company: str | None = Field(default=None, max_length=100)
    email: EmailStr | None = None
    source: LeadSource | None = None
    status: LeadStatus | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def required_fields_not_cleared(self) -> "LeadUpdate":
        for field_name in ("name", "phone", "address", "source", "status"):
            if field_name in self.model_fields_set and getattr(self, field_name) is None:
                raise ValueError(f"{field_name} cannot be null")
        return self


class LeadRead(BaseModel):
    id: UUID
    name: str
    company: str | None
    phone: str
    email: str | None
    address: str
    source: LeadSource
    status: LeadStatus
    notes: str | None
    created_by: UserRef
    last_modified_by: UserRef
    created_at: datetime
    updated_at: datetime


class CallCreate(BaseModel):
    lead_id: UUID
    status: CallStatus
    duration: int = Field(default=0, ge=0)
    connected_response: ConnectedResponse | None = None
    not_connected_reason: NotConnectedReason | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def outcome_matches_status(self) -> "CallCreate":
        if self.status is CallStatus.CONNECTED:
            if self.connected_response is None:
                raise ValueError('connected_response is required when status is "connected"')
            if self.not_connected_reason is not None:
                raise ValueError('not_connected_reason is not allowed when status is "connected"')
        else:
            if self.not_connected_reason is None:
                raise ValueError('not_connected_reason is required when status is "not_connected"')
            if self.connected_response is not None:
                raise ValueError('connected_response is not allowed when status is "not_connected"')
        return self

    def outcome(self) -> CallOutcome:
        if self.status is CallStatus.CONNECTED and self.connected_response is not None:
            return Connected(response=self.connected_response)
        if self.status is CallStatus.NOT_CONNECTED and self.not_connected_reason is not None:
            return NotConnected(reason=self.not_connected_reason)
        raise ValueError("call outcome is incomplete")


class CallRead(BaseModel):
    id: UUID
    lead: LeadRef
    user: UserRef
    status: CallStatus
    duration: int
    connected_response: ConnectedResponse | None
    not_connected_reason: NotConnectedReason | None
    notes: str | None
    created_at: datetime


class LeadDetailRead(LeadRead):
    calls: list[CallRead] = Field(default_factory=list)


class Pagination(BaseModel):
    total: int
    pages: int
    page: int
    limit: int


class LeadPage(BaseModel):
    count: int
    pagination: Pagination
    data: list[LeadRead]


class CallList(BaseModel):
    count: int
    data: list[CallRead]


class LeadDeleteResult(BaseModel):
    id: UUID
    deleted_calls: int
