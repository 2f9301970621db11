"""Unit tests for the CLI — command registration, exit codes and output.

Runs real commands through typer.testing.CliRunner against a descriptor
that serves a local directory and deploys with ``true``.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from typer.testing import CliRunner

from shipyard.cli.app import app
from shipyard.core.audit_log import AuditLog
from shipyard.core.environment_registry import EnvironmentRegistry
from shipyard.models.rollouts import AttemptOutcome
from shipyard.triggers.sources import DirectoryRepository

runner = CliRunner()

_DESCRIPTOR = """
[source]
kind = "directory"
path = "site"

[recipe]
steps = {steps}

[health]
required_passes = 2
interval = 0.0
initial_backoff = 0.0
max_backoff = 0.0
deadline = 10.0

[[environments]]
name = "prod"
deploy_command = "true"
health_command = "{health}"

[[environments]]
name = "staging"
branch = "develop"
deploy_command = "true"
"""


class Project:
    """A throwaway project directory with a descriptor and a static site."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.site = root / "site"
        self.site.mkdir()
        (self.site / "index.html").write_text("<h1>hello</h1>\n")
        self.state = root / "state"
        self.config = root / "shipyard.toml"
        self.write()

    def write(self, *, steps: str = "[]", health: str = "true") -> None:
        self.config.write_text(_DESCRIPTOR.format(steps=steps, health=health))

    @property
    def revision(self) -> str:
        return DirectoryRepository(self.site).head("main")

    def invoke(self, *args: str):
        return runner.invoke(
            app, ["--config", str(self.config), "--state-dir", str(self.state), *args]
        )


@pytest.fixture
def project(tmp_dir: Path) -> Project:
    return Project(tmp_dir)


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    """The CLI must register all expected commands and show help."""

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_flag(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("deploy", "status", "history", "listen", "gc", "demo"):
            assert command in result.output

    @pytest.mark.parametrize(
        "command",
        ["deploy", "status", "history", "environments", "cancel", "gc", "init", "listen", "demo"],
    )
    def test_command_exists(self, command: str):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


# ---------------------------------------------------------------------------
# Test: deploy exit codes
# ---------------------------------------------------------------------------


class TestDeploy:
    def test_success_exit_0(self, project: Project):
        result = project.invoke("deploy", "prod", project.revision)
        assert result.exit_code == 0, result.output
        assert "SUCCEEDED" in result.output

    def test_build_failure_exit_1(self, project: Project):
        project.write(steps='["exit 4"]')
        result = project.invoke("deploy", "prod", project.revision)
        assert result.exit_code == 1

    def test_health_failure_exit_2(self, project: Project):
        project.write(health="false")
        result = project.invoke("deploy", "prod", project.revision)
        assert result.exit_code == 2
        assert "ROLLED BACK" in result.output

    def test_busy_exit_3(self, project: Project):
        assert project.invoke("init").exit_code == 0
        EnvironmentRegistry(project.state / "registry.db").acquire("prod", "elsewhere")
        result = project.invoke("deploy", "prod", project.revision)
        assert result.exit_code == 3

    def test_unknown_environment_exit_5(self, project: Project):
        result = project.invoke("deploy", "nope", project.revision)
        assert result.exit_code == 5

    def test_missing_descriptor_exit_5(self, tmp_dir: Path):
        result = runner.invoke(
            app,
            ["--config", str(tmp_dir / "absent.toml"), "--state-dir", str(tmp_dir), "status", "prod"],
        )
        assert result.exit_code == 5

    def test_unknown_revision_is_build_failure(self, project: Project):
        result = project.invoke("deploy", "prod", "dir-0000000000000000")
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Test: read-only commands
# ---------------------------------------------------------------------------


class TestQueries:
    def test_status_after_deploy(self, project: Project):
        project.invoke("deploy", "prod", project.revision)
        result = project.invoke("status", "prod")
        assert result.exit_code == 0
        assert "prod" in result.output
        assert "healthy" in result.output

    def test_status_unknown_environment(self, project: Project):
        result = project.invoke("status", "nope")
        assert result.exit_code == 5

    def test_history_lists_attempts(self, project: Project):
        project.invoke("deploy", "prod", project.revision)
        project.write(health="false")
        (project.site / "index.html").write_text("<h1>broken</h1>\n")
        project.invoke("deploy", "prod", project.revision)

        result = project.invoke("history", "prod", "--verify-chain")
        assert result.exit_code == 0
        assert "Audit chain intact" in result.output
        assert "Rollout history" in result.output
        outcomes = [r.attempt.outcome for r in AuditLog(project.state / "audit.db").history("prod")]
        assert outcomes == [AttemptOutcome.ROLLED_BACK, AttemptOutcome.SUCCEEDED]

    def test_history_detects_tampering(self, project: Project):
        project.invoke("deploy", "prod", project.revision)
        with sqlite3.connect(project.state / "audit.db") as conn:
            conn.execute("UPDATE rollout_audit SET record_hash = 'TAMPERED'")
        result = project.invoke("history", "prod", "--verify-chain")
        assert result.exit_code == 4

    def test_history_empty(self, project: Project):
        result = project.invoke("history", "staging")
        assert result.exit_code == 0
        assert "No rollout history" in result.output

    def test_environments(self, project: Project):
        result = project.invoke("environments")
        assert result.exit_code == 0
        assert "prod" in result.output
        assert "staging" in result.output

    def test_cancel_idle(self, project: Project):
        result = project.invoke("cancel", "prod")
        assert result.exit_code == 0
        assert "nothing to cancel" in result.output

    def test_cancel_busy_sets_flag(self, project: Project):
        project.invoke("init")
        registry = EnvironmentRegistry(project.state / "registry.db")
        registry.acquire("prod", "elsewhere")
        result = project.invoke("cancel", "prod")
        assert result.exit_code == 0
        assert registry.cancel_requested("prod")

    def test_cancel_force_frees_environment_of_dead_owner(self, project: Project):
        project.invoke("init")
        registry = EnvironmentRegistry(project.state / "registry.db")
        registry.acquire("prod", "crashed-host:1234:abc")
        assert project.invoke("deploy", "prod", project.revision).exit_code == 3

        result = project.invoke("cancel", "prod", "--force")
        assert result.exit_code == 0
        assert registry.require("prod").lease_owner is None
        assert project.invoke("deploy", "prod", project.revision).exit_code == 0


# ---------------------------------------------------------------------------
# Test: maintenance and long-running commands
# ---------------------------------------------------------------------------


class TestMaintenance:
    def test_gc_keeps_current(self, project: Project):
        project.invoke("deploy", "prod", project.revision)
        result = project.invoke("gc")
        assert result.exit_code == 0
        assert "1 remain" in result.output

    def test_listen_deploys_head(self, project: Project):
        result = project.invoke("listen", "--interval", "0.1", "--max-events", "1")
        assert result.exit_code == 0, result.output
        registry = EnvironmentRegistry(project.state / "registry.db")
        assert registry.require("prod").current_artifact is not None
        assert registry.last_seen_revision("prod") == project.revision

    def test_demo(self, tmp_dir: Path):
        result = runner.invoke(app, ["demo", "--state-dir", str(tmp_dir / "demo")])
        assert result.exit_code == 0, result.output
        assert "ROLLED BACK" in result.output
