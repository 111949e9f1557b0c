"""SystemEvent schema — the event type that flows through the sync engine.

Every remote call and state transition emits a SystemEvent. Subscribers
(the audit logger, tests) consume these events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Synchronization lifecycle
    SYNC_REQUESTED = "sync.requested"
    SYNC_SUCCEEDED = "sync.succeeded"
    SYNC_FAILED = "sync.failed"
    SYNC_STATE_CHANGED = "sync.state_changed"
    POLLING_STARTED = "sync.polling_started"
    POLLING_STOPPED = "sync.polling_stopped"

    # Outbound HTTP
    EXTERNAL_API_CALL = "external_api.call"
    EXTERNAL_API_RESPONSE = "external_api.response"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Immutable event record.

    ``entity_kind``/``entity_id`` identify the local record when the event
    concerns one; ``data`` never contains unmasked fiscal identifiers.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    entity_kind: str | None = None
    entity_id: str | None = None

    data: dict[str, Any] = Field(default_factory=dict)
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
