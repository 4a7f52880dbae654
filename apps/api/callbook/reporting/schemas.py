from __future__ import annotations

import datetime
from uuid import UUID

from pydantic import BaseModel

from callbook.crm.enums import LeadSource, LeadStatus


class SourceCount(BaseModel):
    source: LeadSource
    count: int


class StatusCount(BaseModel):
    status: LeadStatus
    count: int


class OwnerCount(BaseModel):
    user_id: UUID
    name: str
    username: str
    count: int


class CallTrendPoint(BaseModel):
    date: datetime.date
    total_calls: int
    connected_calls: int


class DashboardStatsRead(BaseModel):
    total_leads: int
    total_calls: int
    connected_calls: int
    connection_rate: str
    total_telecallers: int


class TelecallerStatRead(BaseModel):
    user_id: UUID
    name: str
    username: str
    total_calls: int
    connected: int


class UserCallStatsRead(BaseModel):
    total_calls: int
    connected_calls: int
    connection_rate: str
    calls_this_week: int
