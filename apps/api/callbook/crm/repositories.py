from __future__ import annotations

from typing import Any

from sqlalchemy.sql import Select

from callbook.crm.models import Call, Lead
from callbook.platform.security.context import AuthContext
from callbook.platform.security.repository import BaseRepository


class LeadRepository(BaseRepository):
    resource = "lead"

    def owner_column(self) -> Any:
        return Lead.created_by


class CallRepository(BaseRepository):
    resource = "call"

    def owner_column(self) -> Any:
        return Call.user_id


def apply_lead_scope(query: Select[Any], ctx: AuthContext) -> Select[Any]:
    return LeadRepository().apply_scope_query(query, ctx)


def apply_call_scope(query: Select[Any], ctx: AuthContext) -> Select[Any]:
    return CallRepository().apply_scope_query(query, ctx)
