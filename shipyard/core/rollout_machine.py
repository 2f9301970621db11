"""Deterministic rollout state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Every transition recorded on the attempt with a timestamp
- Terminal outcome stamped exactly once
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from shipyard.core.errors import InvalidTransitionError
from shipyard.models.rollouts import (
    VALID_TRANSITIONS,
    AttemptOutcome,
    RolloutAttempt,
    RolloutState,
    StateChange,
)

logger = logging.getLogger(__name__)

# States from which an operator cancellation moves straight to ROLLING_BACK
CANCELLABLE_STATES = frozenset(
    {RolloutState.BUILDING, RolloutState.DEPLOYING, RolloutState.HEALTH_CHECKING}
)


class RolloutMachine:
    """Drives one ``RolloutAttempt`` through the rollout states.

    Parameters
    ----------
    attempt:
        The in-flight attempt.  Its ``state`` and ``transitions`` are
        updated in place.
    """

    def __init__(self, attempt: RolloutAttempt) -> None:
        self.attempt = attempt

    @property
    def state(self) -> RolloutState:
        return self.attempt.state

    def can_transition(self, target: RolloutState) -> bool:
        return target in VALID_TRANSITIONS.get(self.attempt.state, set())

    def transition(self, target: RolloutState) -> StateChange:
        """Move to ``target``, recording the change on the attempt.

        Raises ``InvalidTransitionError`` if the table forbids it.
        """
        current = self.attempt.state
        if not self.can_transition(target):
            allowed = sorted(s.value for s in VALID_TRANSITIONS.get(current, set()))
            raise InvalidTransitionError(
                f"Cannot transition {self.attempt.environment} from {current.value} "
                f"to {target.value}. Allowed: {allowed}"
            )
        change = StateChange(from_state=current, to_state=target)
        self.attempt.transitions.append(change)
        self.attempt.state = target
        logger.debug(
            "%s %s: %s -> %s",
            self.attempt.attempt_id, self.attempt.environment, current.value, target.value,
        )
        return change

    def finish(self, outcome: AttemptOutcome, reason: str = "") -> RolloutAttempt:
        """Stamp the outcome and return to IDLE."""
        if self.attempt.outcome is not None:
            raise InvalidTransitionError(
                f"Attempt {self.attempt.attempt_id} already finished as "
                f"{self.attempt.outcome.value}"
            )
        self.transition(RolloutState.IDLE)
        self.attempt.outcome = outcome
        self.attempt.reason = reason
        self.attempt.ended_at = datetime.now(timezone.utc)
        return self.attempt
