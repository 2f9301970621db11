"""Trigger and webhook models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TriggerSource(str, Enum):
    POLL = "poll"
    WEBHOOK = "webhook"
    MANUAL = "manual"
    RESYNC = "resync"


class TriggerEvent(BaseModel):
    """A request to roll ``revision`` out to ``environment``."""

    model_config = ConfigDict(frozen=True)

    environment: str
    revision: str
    source: TriggerSource = TriggerSource.MANUAL
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class WebhookPayload(BaseModel):
    """Body of an inbound source-repository notification."""

    model_config = ConfigDict(frozen=True)

    revision: str
    branch: str
    metadata: dict[str, Any] = {}

    @field_validator("revision", "branch")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value
