"""Pluggable execution host backends.

Defines the ``ExecutionHost`` Protocol the Rollout Controller deploys
through, along with two implementations:

1. **CommandHost** — runs per-environment shell commands from the
   pipeline descriptor (``docker run ...``, ``systemctl restart ...``,
   ``curl -f http://.../health``).
2. **RecordingHost** — in-memory host with scripted results, used by
   tests and the ``demo`` command.

The controller treats a host as an opaque capability: it never inspects
how an artifact is started, only whether it started and whether it is
healthy.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from collections import defaultdict, deque
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Protocol, runtime_checkable

from shipyard.models.rollouts import HealthCheckResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ExecutionHost(Protocol):
    """Protocol for deployment targets.

    Any object with ``run`` and ``health_check`` methods satisfies it.
    """

    def run(self, artifact: str, environment: str) -> bool:
        """Start ``artifact`` (a content address) in ``environment``.

        Returns ``True`` once the artifact is running and serving traffic,
        ``False`` if it failed to start.  May raise; the controller treats
        an exception as a failed start.
        """
        ...

    def health_check(self, environment: str) -> HealthCheckResult:
        """Probe ``environment`` once."""
        ...


# ---------------------------------------------------------------------------
# Command-driven host
# ---------------------------------------------------------------------------


class CommandHost:
    """Deploy and probe by running shell commands.

    Parameters
    ----------
    deploy_commands:
        ``environment -> command`` run to start an artifact.  The command
        sees ``SHIPYARD_ARTIFACT`` (content address),
        ``SHIPYARD_ARTIFACT_PATH`` (tarball on disk) and
        ``SHIPYARD_ENVIRONMENT``.
    health_commands:
        ``environment -> command`` whose exit status 0 means healthy.
        Environments without one always report healthy.
    artifact_path:
        Resolves a content address to the tarball path.
    timeout:
        Per-command timeout in seconds.
    """

    def __init__(
        self,
        deploy_commands: dict[str, str],
        health_commands: dict[str, str],
        artifact_path: Callable[[str], Path],
        *,
        timeout: float = 300.0,
    ) -> None:
        self._deploy = dict(deploy_commands)
        self._health = dict(health_commands)
        self._artifact_path = artifact_path
        self._timeout = timeout

    def _exec(self, command: str, env: dict[str, str]) -> tuple[int, str]:
        try:
            proc = subprocess.run(
                command,
                shell=True,
                env={**os.environ, **env},
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return -1, f"timed out after {self._timeout}s"
        return proc.returncode, proc.stdout.decode("utf-8", "replace").strip()

    def run(self, artifact: str, environment: str) -> bool:
        command = self._deploy.get(environment)
        if not command:
            logger.error("No deploy command configured for %s", environment)
            return False
        code, output = self._exec(
            command,
            {
                "SHIPYARD_ARTIFACT": artifact,
                "SHIPYARD_ARTIFACT_PATH": str(self._artifact_path(artifact)),
                "SHIPYARD_ENVIRONMENT": environment,
            },
        )
        if code != 0:
            logger.warning("Deploy to %s exited %d: %s", environment, code, output[-500:])
        return code == 0

    def health_check(self, environment: str) -> HealthCheckResult:
        command = self._health.get(environment)
        if not command:
            return HealthCheckResult(passed=True, detail="no health command configured")
        code, output = self._exec(command, {"SHIPYARD_ENVIRONMENT": environment})
        detail = output[-500:] if output else f"exit {code}"
        return HealthCheckResult(passed=code == 0, detail=detail)


# ---------------------------------------------------------------------------
# In-memory host
# ---------------------------------------------------------------------------


class RecordingHost:
    """Scripted host that records every call.

    ``fail_runs`` lists artifacts whose start fails.  Health results come
    from a per-environment script (``script_health``); once exhausted, the
    ``default_healthy`` verdict is returned.
    """

    def __init__(
        self,
        *,
        fail_runs: Iterable[str] = (),
        default_healthy: bool = True,
    ) -> None:
        self._fail_runs = set(fail_runs)
        self._default_healthy = default_healthy
        self._health: dict[str, deque[bool]] = defaultdict(deque)
        self._lock = threading.Lock()
        self.running: dict[str, str] = {}
        self.runs: list[tuple[str, str]] = []
        self.checks: list[tuple[str, bool]] = []

    def fail_run(self, artifact: str) -> None:
        self._fail_runs.add(artifact)

    def script_health(self, environment: str, results: Iterable[bool]) -> None:
        with self._lock:
            self._health[environment].extend(results)

    def run(self, artifact: str, environment: str) -> bool:
        with self._lock:
            self.runs.append((environment, artifact))
            if artifact in self._fail_runs:
                return False
            self.running[environment] = artifact
            return True

    def health_check(self, environment: str) -> HealthCheckResult:
        with self._lock:
            script = self._health[environment]
            passed = script.popleft() if script else self._default_healthy
            self.checks.append((environment, passed))
        return HealthCheckResult(
            passed=passed,
            detail=f"{self.running.get(environment, '-')} {'ok' if passed else 'unhealthy'}",
        )
