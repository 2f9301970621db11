"""Pipeline — wires every subsystem together from configuration.

The Pipeline owns the Artifact Store, Environment Registry, Audit Log,
Artifact Builder, execution host, Notifier and Rollout Controller, built
from ``ShipyardSettings`` and a ``PipelineDescriptor``.  The CLI talks to
this object rather than to individual components.
"""

from __future__ import annotations

import logging

from shipyard.config import PipelineDescriptor, ShipyardSettings
from shipyard.core.artifact_store import ArtifactStore
from shipyard.core.audit_log import AuditLog
from shipyard.core.builder import ArtifactBuilder
from shipyard.core.controller import RolloutController
from shipyard.core.environment_registry import EnvironmentRegistry
from shipyard.core.hosts import CommandHost, ExecutionHost
from shipyard.routing.dispatcher import SinkDispatcher
from shipyard.routing.notifier import Notifier
from shipyard.routing.sinks.local_file import LocalFileSink
from shipyard.routing.sinks.log_sink import LoggingSink
from shipyard.triggers.listener import TriggerListener
from shipyard.triggers.sources import DirectoryRepository, GitRepository, SourceRepository

logger = logging.getLogger(__name__)


def source_from_descriptor(descriptor: PipelineDescriptor) -> SourceRepository:
    if descriptor.source.kind == "directory":
        return DirectoryRepository(descriptor.source.path)
    return GitRepository(descriptor.source.path)


class Pipeline:
    """Fully wired deployment pipeline.

    Parameters
    ----------
    settings:
        Process settings (paths, retention, timeouts).
    descriptor:
        Desired-state descriptor.  Its environments are reconciled into
        the registry on construction.
    source:
        Overrides the repository derived from the descriptor.
    host:
        Overrides the ``CommandHost`` derived from the descriptor.
    """

    def __init__(
        self,
        settings: ShipyardSettings,
        descriptor: PipelineDescriptor,
        *,
        source: SourceRepository | None = None,
        host: ExecutionHost | None = None,
    ) -> None:
        self.settings = settings
        self.descriptor = descriptor

        self.store = ArtifactStore(settings.resolved_artifact_store_path)
        self.registry = EnvironmentRegistry(
            settings.resolved_registry_path, lease_ttl=settings.lease_ttl
        )
        self.audit = AuditLog(settings.resolved_audit_path)
        self.source = source or source_from_descriptor(descriptor)
        self.builder = ArtifactBuilder(
            self.source, self.store, step_timeout=settings.build_step_timeout
        )
        self.host = host or CommandHost(
            {e.name: e.deploy_command for e in descriptor.environments},
            {e.name: e.health_command for e in descriptor.environments},
            self.store.path_for,
        )

        self.dispatcher = SinkDispatcher()
        self.dispatcher.register_sink(LocalFileSink(settings.resolved_events_path))
        self.dispatcher.register_sink(LoggingSink())
        self.notifier = Notifier(self.dispatcher, maxsize=settings.notify_queue_size)

        self.controller = RolloutController(
            self.registry,
            self.store,
            self.builder,
            self.host,
            self.audit,
            self.notifier,
            recipe=descriptor.recipe,
            health_policy=descriptor.health,
        )

        created = self.reconcile()
        if created:
            logger.info("Registered new environments: %s", ", ".join(created))

    def reconcile(self) -> list[str]:
        """Apply the descriptor's environments to the registry (idempotent)."""
        return self.registry.reconcile(
            (env.name, env.branch) for env in self.descriptor.environments
        )

    def listener(self, *, poll_interval: float | None = 30.0) -> TriggerListener:
        return TriggerListener(
            self.source,
            self.registry,
            poll_interval=poll_interval,
            in_flight=self.controller.is_tracked,
        )

    def collect_garbage(self) -> int:
        """Remove unreferenced artifacts outside the retention window."""
        referenced = self.registry.referenced_artifacts()
        freed = self.store.gc(referenced, retention_seconds=self.settings.retention_seconds)
        logger.info("GC freed %d artifact(s); %d referenced", freed, len(referenced))
        return freed

    def close(self) -> None:
        self.controller.shutdown()
        self.notifier.close()
