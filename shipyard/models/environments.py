"""Deployment environment records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class HealthStatus(str, Enum):
    """Last known health of an environment."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"  # rollback itself failed


class Environment(BaseModel):
    """Snapshot of one environment row from the registry.

    Instances are read-only views; all mutation goes through
    ``EnvironmentRegistry``, and ``current_artifact`` only changes from
    the Rollout Controller.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    branch: str = "main"
    current_artifact: str | None = None
    desired_artifact: str | None = None
    health_status: HealthStatus = HealthStatus.UNKNOWN
    last_transition_at: datetime | None = None
    last_seen_revision: str | None = None
    cancel_requested: bool = False
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None

    @property
    def busy(self) -> bool:
        return self.lease_owner is not None
