"""Tests for configuration — settings, descriptor loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipyard.config import PipelineDescriptor, ShipyardSettings, load_descriptor
from shipyard.core.errors import DescriptorError
from shipyard.models.pipeline import Recipe

DESCRIPTOR = """
[source]
kind = "directory"
path = "site"

[recipe]
steps = ["mkdir -p dist", "cp -r . dist/ 2>/dev/null || true"]
output = "dist"

[health]
required_passes = 2
interval = 0.5

[[environments]]
name = "staging"
branch = "develop"
deploy_command = "true"

[[environments]]
name = "prod"
deploy_command = "true"
health_command = "curl -fsS http://localhost/health"
"""


class TestSettings:
    def test_defaults(self):
        settings = ShipyardSettings()
        assert settings.retention_seconds == 86400
        assert settings.resolved_registry_path == Path(".shipyard/registry.db")
        assert settings.resolved_artifact_store_path == Path(".shipyard/artifacts")

    def test_state_dir_moves_all_paths(self, tmp_dir: Path):
        settings = ShipyardSettings(state_dir=tmp_dir)
        assert settings.resolved_audit_path == tmp_dir / "audit.db"
        assert settings.resolved_events_path == tmp_dir / "events"

    def test_explicit_path_wins(self, tmp_dir: Path):
        settings = ShipyardSettings(state_dir=tmp_dir, audit_path=tmp_dir / "elsewhere.db")
        assert settings.resolved_audit_path == tmp_dir / "elsewhere.db"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SHIPYARD_RETENTION_SECONDS", "60")
        monkeypatch.setenv("SHIPYARD_LOG_LEVEL", "DEBUG")
        settings = ShipyardSettings()
        assert settings.retention_seconds == 60
        assert settings.log_level == "DEBUG"


class TestDescriptor:
    def test_load(self, tmp_dir: Path):
        path = tmp_dir / "shipyard.toml"
        path.write_text(DESCRIPTOR)
        descriptor = load_descriptor(path)

        assert descriptor.source.kind == "directory"
        assert descriptor.source.path == (tmp_dir / "site").resolve()
        assert descriptor.recipe.output == "dist"
        assert descriptor.health.required_passes == 2
        assert descriptor.health.failure_threshold == 2
        assert [e.name for e in descriptor.environments] == ["staging", "prod"]
        assert descriptor.environment("staging").branch == "develop"
        assert descriptor.environment("missing") is None

    def test_missing_file(self, tmp_dir: Path):
        with pytest.raises(DescriptorError, match="not found"):
            load_descriptor(tmp_dir / "absent.toml")

    def test_invalid_toml(self, tmp_dir: Path):
        path = tmp_dir / "shipyard.toml"
        path.write_text("[[environments]\nname = ")
        with pytest.raises(DescriptorError, match="Invalid TOML"):
            load_descriptor(path)

    @pytest.mark.parametrize(
        "body",
        [
            '[source]\nkind = "svn"',
            '[[environments]]\nname = "a"\n[[environments]]\nname = "a"',
            '[[environments]]\nname = "  "',
            '[recipe]\noutput = "../escape"',
            "[health]\nrequired_passes = 0",
        ],
    )
    def test_invalid_descriptor(self, tmp_dir: Path, body: str):
        path = tmp_dir / "shipyard.toml"
        path.write_text(body)
        with pytest.raises(DescriptorError):
            load_descriptor(path)

    def test_descriptor_error_is_value_error(self):
        assert issubclass(DescriptorError, ValueError)

    def test_empty_descriptor_has_defaults(self):
        descriptor = PipelineDescriptor()
        assert descriptor.recipe == Recipe()
        assert descriptor.environments == []
