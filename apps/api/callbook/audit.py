from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from callbook.context import get_correlation_id
from callbook.platform.security.context import AuthContext

AUDIT_HISTORY_LIMIT = 1000

audit_entries: deque[dict[str, Any]] = deque(maxlen=AUDIT_HISTORY_LIMIT)


def record(
    ctx: AuthContext,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> None:
    audit_entries.append(
        {
            "id": str(uuid.uuid4()),
            "actor_user_id": ctx.user_id,
            "actor_role": ctx.role,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "before": before,
            "after": after,
            "correlation_id": ctx.correlation_id or get_correlation_id(),
            "occurred_at": datetime.now(timezone.utc).isoformat(),
        }
    )


def entries_for(entity_type: str, *, action: str | None = None) -> list[dict[str, Any]]:
    return [
        entry
        for entry in audit_entries
        if entry["entity_type"] == entity_type and (action is None or entry["action"] == action)
    ]
