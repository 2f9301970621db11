"""Integration tests — the full pipeline from trigger to audit record.

Exercises:
1. prod at A; B deployed and passes 3/3 health checks -> succeeded
2. C deployed and fails two health checks -> rolled back to B
3. Webhook-driven rollouts through the listener
4. Notifications written by the file sink
5. State survives a pipeline restart
"""

from __future__ import annotations

from pathlib import Path

import pytest

from shipyard.config import EnvironmentSpec, PipelineDescriptor, ShipyardSettings
from shipyard.core.hosts import RecordingHost
from shipyard.core.pipeline import Pipeline
from shipyard.models.environments import HealthStatus
from shipyard.models.events import EventKind
from shipyard.models.pipeline import HealthPolicy, Recipe
from shipyard.models.rollouts import AttemptOutcome, RolloutState
from shipyard.routing.sinks.local_file import LocalFileSink
from shipyard.triggers.sources import StaticRepository


@pytest.fixture
def descriptor() -> PipelineDescriptor:
    return PipelineDescriptor(
        recipe=Recipe(steps=["mkdir -p dist", "cp index.html dist/"], output="dist"),
        health=HealthPolicy(
            required_passes=3,
            interval=0.0,
            initial_backoff=0.0,
            max_backoff=0.0,
            deadline=30.0,
            failure_threshold=2,
        ),
        environments=[
            EnvironmentSpec(name="prod", branch="main"),
            EnvironmentSpec(name="staging", branch="develop"),
        ],
    )


@pytest.fixture
def pipeline(tmp_dir: Path, repo: StaticRepository, host: RecordingHost, descriptor):
    pipeline = Pipeline(
        ShipyardSettings(state_dir=tmp_dir / "state"), descriptor, source=repo, host=host
    )
    yield pipeline
    pipeline.close()


class TestRolloutScenarios:
    def test_succeed_then_roll_back(self, pipeline: Pipeline, host: RecordingHost):
        a = pipeline.controller.run_once("prod", "A")
        assert a.outcome == AttemptOutcome.SUCCEEDED

        # Scenario 1: B passes three consecutive health checks
        host.script_health("prod", [True, True, True])
        b = pipeline.controller.run_once("prod", "B")
        assert b.outcome == AttemptOutcome.SUCCEEDED
        assert b.from_artifact == a.to_artifact
        env = pipeline.registry.require("prod")
        assert env.current_artifact == b.to_artifact
        assert env.desired_artifact is None
        assert env.health_status == HealthStatus.HEALTHY
        assert [c.passed for c in b.health_checks] == [True, True, True]

        # Scenario 2: C fails twice and is rolled back to B
        host.script_health("prod", [False, False])
        c = pipeline.controller.run_once("prod", "C")
        assert c.outcome == AttemptOutcome.ROLLED_BACK
        env = pipeline.registry.require("prod")
        assert env.current_artifact == b.to_artifact
        assert env.current_artifact != c.to_artifact
        assert host.running["prod"] == b.to_artifact

        history = pipeline.audit.history("prod")
        assert [r.attempt.outcome for r in history] == [
            AttemptOutcome.ROLLED_BACK,
            AttemptOutcome.SUCCEEDED,
            AttemptOutcome.SUCCEEDED,
        ]
        assert pipeline.audit.verify_chain("prod")

    def test_no_failed_check_after_success(self, pipeline: Pipeline, host: RecordingHost):
        host.script_health("prod", [True, False, True, True, True])
        attempt = pipeline.controller.run_once("prod", "A")
        assert attempt.outcome == AttemptOutcome.SUCCEEDED
        entered = next(c.at for c in attempt.transitions if c.to_state == RolloutState.SUCCEEDED)
        assert len(attempt.health_checks) == 5
        assert all(check.timestamp <= entered for check in attempt.health_checks)
        assert all(check.passed for check in attempt.health_checks[-3:])

    def test_environments_are_independent(self, pipeline: Pipeline, host: RecordingHost):
        pipeline.controller.run_once("prod", "A")
        host.script_health("staging", [False, False])
        staging = pipeline.controller.run_once("staging", "B")
        assert staging.outcome == AttemptOutcome.ROLLED_BACK
        assert pipeline.registry.require("prod").health_status == HealthStatus.HEALTHY


class TestTriggeredRollouts:
    def test_webhook_to_rollout(self, pipeline: Pipeline, repo: StaticRepository):
        repo.push("D", {"index.html": "<h1>D</h1>"}, branch="develop")
        listener = pipeline.listener(poll_interval=None)
        # Resync yields prod@C and staging@D first
        assert listener.pump(pipeline.controller, max_events=2) == 2
        assert pipeline.controller.wait_idle(timeout=30)

        assert pipeline.audit.latest("prod").attempt.revision == "C"
        assert pipeline.audit.latest("staging").attempt.revision == "D"

        repo.push("E", {"index.html": "<h1>E</h1>"}, branch="develop")
        assert listener.receive_webhook({"revision": "E", "branch": "develop"}) == ["staging"]
        assert listener.pump(pipeline.controller, max_events=1) == 1
        assert pipeline.controller.wait_idle(timeout=30)
        assert pipeline.audit.latest("staging").attempt.revision == "E"

    def test_events_written_to_file_sink(self, pipeline: Pipeline, tmp_dir: Path):
        pipeline.controller.run_once("prod", "A")
        pipeline.notifier.flush()
        sink = LocalFileSink(pipeline.settings.resolved_events_path)
        kinds = [sink.read_event(p).kind for p in sink.list_events("prod")]
        assert sorted(k.value for k in kinds) == sorted(
            [EventKind.STARTED.value, EventKind.SUCCEEDED.value]
        )


class TestRestart:
    def test_state_survives_restart(self, tmp_dir: Path, repo, host, descriptor):
        settings = ShipyardSettings(state_dir=tmp_dir / "state")
        first = Pipeline(settings, descriptor, source=repo, host=host)
        attempt = first.controller.run_once("prod", "B")
        first.close()

        second = Pipeline(settings, descriptor, source=repo, host=host)
        try:
            assert second.registry.require("prod").current_artifact == attempt.to_artifact
            assert second.audit.latest("prod").attempt.attempt_id == attempt.attempt_id
            assert second.reconcile() == []
        finally:
            second.close()

    def test_gc_after_rollouts(self, pipeline: Pipeline):
        pipeline.controller.run_once("prod", "A")
        pipeline.controller.run_once("prod", "B")
        pipeline.settings.retention_seconds = 0
        freed = pipeline.collect_garbage()
        assert freed == 1
        current = pipeline.registry.require("prod").current_artifact
        assert pipeline.store.exists(current)
