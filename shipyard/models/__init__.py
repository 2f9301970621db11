"""Shipyard data models — all Pydantic v2."""

from shipyard.models.artifacts import Artifact
from shipyard.models.environments import Environment, HealthStatus
from shipyard.models.events import EventKind, NotificationEvent
from shipyard.models.pipeline import HealthPolicy, Recipe
from shipyard.models.rollouts import (
    VALID_TRANSITIONS,
    AttemptOutcome,
    AuditRecord,
    HealthCheckResult,
    RolloutAttempt,
    RolloutState,
    StateChange,
)
from shipyard.models.triggers import TriggerEvent, TriggerSource, WebhookPayload

__all__ = [
    # artifacts
    "Artifact",
    # environments
    "Environment",
    "HealthStatus",
    # events
    "EventKind",
    "NotificationEvent",
    # pipeline
    "HealthPolicy",
    "Recipe",
    # rollouts
    "VALID_TRANSITIONS",
    "AttemptOutcome",
    "AuditRecord",
    "HealthCheckResult",
    "RolloutAttempt",
    "RolloutState",
    "StateChange",
    # triggers
    "TriggerEvent",
    "TriggerSource",
    "WebhookPayload",
]
