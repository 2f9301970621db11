"""Pipeline notification events."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    """The four pipeline-state transitions the notifier emits."""

    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class NotificationEvent(BaseModel):
    """An observable pipeline-state transition."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: EventKind
    environment: str
    revision: str
    attempt_id: str
    from_artifact: str | None = None
    to_artifact: str | None = None
    reason: str = ""
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
