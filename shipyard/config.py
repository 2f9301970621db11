"""Runtime configuration — env-driven, with a declarative pipeline descriptor.

Two layers:

- ``ShipyardSettings`` holds process-level settings (paths, log level,
  retention) read from a ``.env`` file and ``SHIPYARD_*`` environment
  variables via pydantic-settings.
- ``PipelineDescriptor`` is the desired-state description of the pipeline
  (source, recipe, health policy, environments), loaded from
  ``shipyard.toml``.  It is consumed by ``EnvironmentRegistry.reconcile``.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shipyard.core.errors import DescriptorError
from shipyard.models.pipeline import HealthPolicy, Recipe


class ShipyardSettings(BaseSettings):
    """Process configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SHIPYARD_LOG_LEVEL=DEBUG
        export SHIPYARD_STATE_DIR=/var/lib/shipyard
        export SHIPYARD_RETENTION_SECONDS=604800
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SHIPYARD_",
        env_file_encoding="utf-8",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    state_dir: Path = Path(".shipyard")
    registry_path: Path | None = None
    audit_path: Path | None = None
    artifact_store_path: Path | None = None
    events_path: Path | None = None
    descriptor_path: Path = Path("shipyard.toml")

    # Artifacts unreferenced for less than this many seconds survive GC
    retention_seconds: int = 86400
    build_step_timeout: float = 600.0
    notify_queue_size: int = 1024
    # A rollout lease not renewed for this long is considered abandoned
    lease_ttl: float = 300.0

    @property
    def resolved_registry_path(self) -> Path:
        return self.registry_path or self.state_dir / "registry.db"

    @property
    def resolved_audit_path(self) -> Path:
        return self.audit_path or self.state_dir / "audit.db"

    @property
    def resolved_artifact_store_path(self) -> Path:
        return self.artifact_store_path or self.state_dir / "artifacts"

    @property
    def resolved_events_path(self) -> Path:
        return self.events_path or self.state_dir / "events"


class SourceSpec(BaseModel):
    """Where revisions come from.

    ``kind="git"`` reads a local git repository at ``path``.
    ``kind="directory"`` serves the directory at ``path`` as a single
    revision identified by its content hash; useful for static content.
    """

    model_config = ConfigDict(frozen=True)

    kind: str = "git"
    path: Path = Path(".")

    @field_validator("kind")
    @classmethod
    def _known_kind(cls, value: str) -> str:
        if value not in ("git", "directory"):
            raise ValueError(f"unknown source kind {value!r}")
        return value


class EnvironmentSpec(BaseModel):
    """One deployment target in the descriptor."""

    model_config = ConfigDict(frozen=True)

    name: str
    branch: str = "main"
    deploy_command: str = ""
    health_command: str = ""

    @field_validator("name")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("environment name must not be empty")
        return value


class PipelineDescriptor(BaseModel):
    """Declarative desired state for the whole pipeline."""

    model_config = ConfigDict(frozen=True)

    source: SourceSpec = SourceSpec()
    recipe: Recipe = Recipe()
    health: HealthPolicy = HealthPolicy()
    environments: list[EnvironmentSpec] = Field(default_factory=list)

    @field_validator("environments")
    @classmethod
    def _unique_names(cls, value: list[EnvironmentSpec]) -> list[EnvironmentSpec]:
        names = [env.name for env in value]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate environment names: {duplicates}")
        return value

    def environment(self, name: str) -> EnvironmentSpec | None:
        for env in self.environments:
            if env.name == name:
                return env
        return None


def load_descriptor(path: Path) -> PipelineDescriptor:
    """Read and validate a TOML pipeline descriptor.

    Raises
    ------
    DescriptorError
        If the file is missing, is not valid TOML, or fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise DescriptorError(f"Pipeline descriptor not found: {path}")
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise DescriptorError(f"Invalid TOML in {path}: {exc}") from exc

    try:
        descriptor = PipelineDescriptor.model_validate(data)
    except ValidationError as exc:
        raise DescriptorError(f"Invalid pipeline descriptor {path}: {exc}") from exc

    # Relative source paths resolve against the descriptor's directory
    if not descriptor.source.path.is_absolute():
        source = descriptor.source.model_copy(
            update={"path": (path.parent / descriptor.source.path).resolve()}
        )
        descriptor = descriptor.model_copy(update={"source": source})
    return descriptor
