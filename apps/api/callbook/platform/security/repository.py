from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.sql import Select

from callbook.platform.security.context import AuthContext
from callbook.platform.security.policy import apply_scope, authorize_write


class BaseRepository:
    resource = ""

    def owner_column(self) -> Any:
        raise NotImplementedError

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        return apply_scope(query, self.owner_column(), ctx)

    def validate_write_security(self, ctx: AuthContext, owner_id: uuid.UUID | None, *, action: str = "write") -> None:
        authorize_write(ctx, self.resource, owner_id, action=action)
