"""Shared test fixtures for Shipyard."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from shipyard.core.artifact_store import ArtifactStore
from shipyard.core.audit_log import AuditLog
from shipyard.core.builder import ArtifactBuilder
from shipyard.core.controller import RolloutController
from shipyard.core.environment_registry import EnvironmentRegistry
from shipyard.core.hosts import RecordingHost
from shipyard.models.events import NotificationEvent
from shipyard.models.pipeline import HealthPolicy, Recipe
from shipyard.routing.dispatcher import SinkDispatcher
from shipyard.routing.notifier import Notifier
from shipyard.routing.sinks.log_sink import CallbackSink
from shipyard.triggers.sources import StaticRepository


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test state."""
    return tmp_path


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ArtifactStore:
    """Provide a fresh ArtifactStore in a temp directory."""
    return ArtifactStore(tmp_dir / "artifacts")


@pytest.fixture
def registry(tmp_dir: Path) -> EnvironmentRegistry:
    """Provide a registry with ``prod`` and ``staging`` environments."""
    reg = EnvironmentRegistry(tmp_dir / "registry.db")
    reg.reconcile([("prod", "main"), ("staging", "develop")])
    return reg


@pytest.fixture
def audit_log(tmp_dir: Path) -> AuditLog:
    """Provide a fresh AuditLog backed by a temp SQLite database."""
    return AuditLog(tmp_dir / "audit.db")


@pytest.fixture
def repo() -> StaticRepository:
    """Provide an in-memory repository with revisions A, B and C on main."""
    repo = StaticRepository()
    for rev in ("A", "B", "C"):
        repo.push(rev, {"index.html": f"<h1>{rev}</h1>\n", "app.txt": f"revision {rev}\n"})
    return repo


@pytest.fixture
def host() -> RecordingHost:
    return RecordingHost()


@pytest.fixture
def fast_policy() -> HealthPolicy:
    """Health policy with no waiting between probes."""
    return HealthPolicy(
        required_passes=3,
        interval=0.0,
        initial_backoff=0.0,
        max_backoff=0.0,
        deadline=30.0,
        failure_threshold=2,
    )


@pytest.fixture
def builder(repo: StaticRepository, artifact_store: ArtifactStore, tmp_dir: Path) -> ArtifactBuilder:
    scratch = tmp_dir / "scratch"
    scratch.mkdir()
    return ArtifactBuilder(repo, artifact_store, step_timeout=30.0, scratch_root=scratch)


@pytest.fixture
def events() -> list[NotificationEvent]:
    """Collects every event the notifier delivers."""
    return []


@pytest.fixture
def notifier(events: list[NotificationEvent]):
    dispatcher = SinkDispatcher()
    dispatcher.register_sink(CallbackSink(events.append))
    notifier = Notifier(dispatcher)
    yield notifier
    notifier.close()


@pytest.fixture
def make_controller(
    registry: EnvironmentRegistry,
    artifact_store: ArtifactStore,
    builder: ArtifactBuilder,
    host: RecordingHost,
    audit_log: AuditLog,
    notifier: Notifier,
    fast_policy: HealthPolicy,
) -> Callable[..., RolloutController]:
    """Factory fixture: build a RolloutController wired to the test fixtures."""
    created: list[RolloutController] = []

    def _factory(**overrides: Any) -> RolloutController:
        kwargs: dict[str, Any] = {
            "recipe": Recipe(),
            "health_policy": fast_policy,
            "owner": "test-owner",
            "busy_retry": 0.05,
            "cancel_poll": 0.01,
        }
        kwargs.update(overrides)
        controller = RolloutController(
            registry, artifact_store, builder, host, audit_log, notifier, **kwargs
        )
        created.append(controller)
        return controller

    yield _factory
    for controller in created:
        controller.shutdown(cancel=True, timeout=5)


@pytest.fixture
def controller(make_controller: Callable[..., RolloutController]) -> RolloutController:
    return make_controller()
