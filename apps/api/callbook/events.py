from __future__ import annotations

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from callbook.context import get_correlation_id
from callbook.core.events import event_bus

EVENT_HISTORY_LIMIT = 1000

published_events: deque[dict[str, Any]] = deque(maxlen=EVENT_HISTORY_LIMIT)


def publish(envelope: dict[str, Any]) -> None:
    envelope.setdefault("event_id", str(uuid.uuid4()))
    envelope.setdefault("occurred_at", datetime.now(timezone.utc).isoformat())
    envelope.setdefault("version", 1)
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)
