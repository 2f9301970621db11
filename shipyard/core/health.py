"""Post-deploy health verification with bounded exponential backoff."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from shipyard.core.errors import CancelledError, HealthCheckFailure
from shipyard.core.hosts import ExecutionHost
from shipyard.models.pipeline import HealthPolicy
from shipyard.models.rollouts import HealthCheckResult

logger = logging.getLogger(__name__)

# wait(seconds) -> True if the wait was interrupted by a cancellation
Waiter = Callable[[float], bool]


class HealthVerifier:
    """Polls an environment until it is proven healthy or gives up.

    Parameters
    ----------
    policy:
        Pass count, spacing, backoff and deadline.
    clock:
        Monotonic clock, overridable for tests.
    """

    def __init__(
        self,
        policy: HealthPolicy,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policy = policy
        self._clock = clock

    def verify(
        self,
        host: ExecutionHost,
        environment: str,
        wait: Waiter,
        results: list[HealthCheckResult],
    ) -> None:
        """Return once ``required_passes`` consecutive checks pass.

        Every probe result is appended to ``results`` as it happens, so the
        caller keeps the evidence even when this raises.

        Raises
        ------
        HealthCheckFailure
            On ``failure_threshold`` consecutive failures or when the
            deadline expires.
        CancelledError
            When ``wait`` reports a cancellation.
        """
        policy = self._policy
        started = self._clock()
        passes = failures = 0
        backoff = policy.initial_backoff

        while True:
            result = self._probe(host, environment)
            results.append(result)
            elapsed = self._clock() - started

            if elapsed > policy.deadline:
                raise HealthCheckFailure(
                    f"Health deadline of {policy.deadline}s exceeded "
                    f"({passes}/{policy.required_passes} passes)"
                )

            if result.passed:
                passes += 1
                failures = 0
                backoff = policy.initial_backoff
                if passes >= policy.required_passes:
                    logger.info(
                        "%s healthy after %d checks in %.1fs",
                        environment, len(results), elapsed,
                    )
                    return
                delay = policy.interval
            else:
                passes = 0
                failures += 1
                logger.warning(
                    "Health check %d/%d failed for %s: %s",
                    failures, policy.failure_threshold, environment, result.detail,
                )
                if failures >= policy.failure_threshold:
                    raise HealthCheckFailure(
                        f"{failures} consecutive health checks failed: {result.detail}"
                    )
                delay = backoff
                backoff = min(backoff * 2, policy.max_backoff)

            if elapsed + delay > policy.deadline:
                raise HealthCheckFailure(
                    f"Health deadline of {policy.deadline}s would be exceeded "
                    f"before the next check ({passes}/{policy.required_passes} passes)"
                )
            if wait(delay):
                raise CancelledError("cancelled during health checking")

    @staticmethod
    def _probe(host: ExecutionHost, environment: str) -> HealthCheckResult:
        try:
            return host.health_check(environment)
        except Exception as exc:  # noqa: BLE001
            return HealthCheckResult(passed=False, detail=f"health check raised: {exc}")
