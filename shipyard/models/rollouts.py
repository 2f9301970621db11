"""Rollout state machine models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RolloutState(str, Enum):
    """States of the per-environment rollout state machine."""

    IDLE = "idle"
    BUILDING = "building"
    DEPLOYING = "deploying"
    HEALTH_CHECKING = "health_checking"
    SUCCEEDED = "succeeded"
    ROLLING_BACK = "rolling_back"


# Valid state transitions, enforced by RolloutMachine.
# Cancellation uses the edges into ROLLING_BACK from every active state.
VALID_TRANSITIONS: dict[RolloutState, set[RolloutState]] = {
    RolloutState.IDLE: {RolloutState.BUILDING},
    RolloutState.BUILDING: {
        RolloutState.DEPLOYING,
        RolloutState.IDLE,  # build failure: environment untouched
        RolloutState.ROLLING_BACK,
    },
    RolloutState.DEPLOYING: {
        RolloutState.HEALTH_CHECKING,
        RolloutState.ROLLING_BACK,
    },
    RolloutState.HEALTH_CHECKING: {
        RolloutState.SUCCEEDED,
        RolloutState.ROLLING_BACK,
    },
    RolloutState.SUCCEEDED: {RolloutState.IDLE},
    RolloutState.ROLLING_BACK: {RolloutState.IDLE},
}


class AttemptOutcome(str, Enum):
    """Final result recorded on a completed attempt."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


class HealthCheckResult(BaseModel):
    """One post-deploy probe."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    passed: bool
    detail: str = ""


class StateChange(BaseModel):
    """A single state transition within an attempt."""

    model_config = ConfigDict(frozen=True)

    from_state: RolloutState
    to_state: RolloutState
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RolloutAttempt(BaseModel):
    """One execution of the controller against one environment.

    Mutable while in flight (the controller updates ``state`` and appends
    health checks); frozen into the audit log on completion.
    """

    attempt_id: str = Field(default_factory=lambda: f"ra-{uuid.uuid4().hex[:12]}")
    environment: str
    revision: str
    from_artifact: str | None = None
    to_artifact: str | None = None
    state: RolloutState = RolloutState.IDLE
    outcome: AttemptOutcome | None = None
    reason: str = ""
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    ended_at: datetime | None = None
    health_checks: list[HealthCheckResult] = []
    transitions: list[StateChange] = []

    @property
    def finished(self) -> bool:
        return self.outcome is not None


class AuditRecord(BaseModel):
    """A sealed, hash-chained audit log entry for a completed attempt."""

    model_config = ConfigDict(frozen=True)

    attempt: RolloutAttempt
    sequence: int = 0
    previous_record_hash: str = ""
    record_hash: str = ""
