"""Tests for HealthVerifier — consecutive passes, thresholds, deadline, cancel."""

from __future__ import annotations

import pytest

from shipyard.core.errors import CancelledError, HealthCheckFailure
from shipyard.core.health import HealthVerifier
from shipyard.core.hosts import RecordingHost
from shipyard.models.pipeline import HealthPolicy
from shipyard.models.rollouts import HealthCheckResult


class FakeClock:
    """Monotonic clock advanced only by ``wait``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.waits: list[float] = []

    def __call__(self) -> float:
        return self.now

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        self.now += seconds
        return False


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _policy(**overrides) -> HealthPolicy:
    values = dict(
        required_passes=3,
        interval=1.0,
        initial_backoff=0.5,
        max_backoff=2.0,
        deadline=30.0,
        failure_threshold=2,
    )
    values.update(overrides)
    return HealthPolicy(**values)


class TestHealthVerifier:
    def test_three_passes(self, host: RecordingHost, clock: FakeClock):
        results: list[HealthCheckResult] = []
        HealthVerifier(_policy(), clock=clock).verify(host, "prod", clock.wait, results)
        assert [r.passed for r in results] == [True, True, True]
        assert clock.waits == [1.0, 1.0]

    def test_two_failures_fail(self, host: RecordingHost, clock: FakeClock):
        host.script_health("prod", [False, False])
        results: list[HealthCheckResult] = []
        with pytest.raises(HealthCheckFailure):
            HealthVerifier(_policy(), clock=clock).verify(host, "prod", clock.wait, results)
        assert [r.passed for r in results] == [False, False]

    def test_failure_resets_pass_count(self, host: RecordingHost, clock: FakeClock):
        host.script_health("prod", [True, True, False, True, True, True])
        results: list[HealthCheckResult] = []
        HealthVerifier(_policy(), clock=clock).verify(host, "prod", clock.wait, results)
        assert len(results) == 6

    def test_backoff_doubles_and_caps(self, clock: FakeClock):
        host = RecordingHost(default_healthy=False)
        results: list[HealthCheckResult] = []
        with pytest.raises(HealthCheckFailure):
            HealthVerifier(_policy(failure_threshold=5), clock=clock).verify(
                host, "prod", clock.wait, results
            )
        assert clock.waits == [0.5, 1.0, 2.0, 2.0]

    def test_deadline(self, host: RecordingHost, clock: FakeClock):
        results: list[HealthCheckResult] = []
        with pytest.raises(HealthCheckFailure, match="deadline"):
            HealthVerifier(_policy(required_passes=10, deadline=3.5), clock=clock).verify(
                host, "prod", clock.wait, results
            )

    def test_probe_exception_counts_as_failure(self, clock: FakeClock):
        class ExplodingHost(RecordingHost):
            def health_check(self, environment):
                raise ConnectionError("refused")

        results: list[HealthCheckResult] = []
        with pytest.raises(HealthCheckFailure):
            HealthVerifier(_policy(), clock=clock).verify(
                ExplodingHost(), "prod", clock.wait, results
            )
        assert "refused" in results[0].detail

    def test_cancel_during_wait(self, host: RecordingHost, clock: FakeClock):
        results: list[HealthCheckResult] = []
        with pytest.raises(CancelledError):
            HealthVerifier(_policy(), clock=clock).verify(
                host, "prod", lambda seconds: True, results
            )
        assert len(results) == 1

    def test_single_pass_policy(self, host: RecordingHost, clock: FakeClock):
        results: list[HealthCheckResult] = []
        HealthVerifier(_policy(required_passes=1), clock=clock).verify(
            host, "prod", clock.wait, results
        )
        assert len(results) == 1
        assert clock.waits == []


class TestHealthPolicy:
    def test_rejects_bad_bounds(self):
        with pytest.raises(ValueError):
            HealthPolicy(required_passes=0)
        with pytest.raises(ValueError):
            HealthPolicy(initial_backoff=4.0, max_backoff=1.0)
        with pytest.raises(ValueError):
            HealthPolicy(deadline=0)
