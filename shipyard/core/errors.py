"""Error taxonomy for the deployment pipeline.

Everything below the Rollout Controller is translated into one of these
kinds before it reaches an attempt record.  Only ``AuditWriteError`` is
allowed to escape the controller.
"""

from __future__ import annotations


class ShipyardError(RuntimeError):
    """Base class for all pipeline errors."""


class BuildError(ShipyardError):
    """A recipe step exited non-zero.  The environment is left untouched.

    Parameters
    ----------
    step:
        0-based index of the failing recipe step.
    exit_code:
        The step's exit status (``-1`` for a timeout).
    log:
        Combined build log up to and including the failing step.
    """

    def __init__(self, step: int, exit_code: int, log: str, command: str = "") -> None:
        self.step = step
        self.exit_code = exit_code
        self.log = log
        self.command = command
        super().__init__(
            f"Build step {step} ({command!r}) exited with {exit_code}"
            if command
            else f"Build step {step} exited with {exit_code}"
        )


class DeployError(ShipyardError):
    """The execution host failed to start an artifact."""


class HealthCheckFailure(ShipyardError):
    """Health checks failed or the deadline expired."""


class StoreError(ShipyardError):
    """Artifact or audit storage read/write failure."""


class ArtifactNotFoundError(StoreError):
    """Raised when an artifact hash is absent from the store."""


class ArtifactIntegrityError(StoreError):
    """Raised when a stored artifact's hash does not match its address."""


class AuditWriteError(StoreError):
    """Raised when a completed attempt cannot be appended to the audit log."""


class AuditIntegrityError(ShipyardError):
    """Raised when the audit hash chain is broken."""


class BusyError(ShipyardError):
    """Another attempt already owns the environment."""


class InvalidTransitionError(ShipyardError):
    """Raised when a requested rollout state transition is not valid."""


class UnknownEnvironmentError(ShipyardError, LookupError):
    """Raised for an environment name that is not registered."""


class DescriptorError(ShipyardError, ValueError):
    """Raised when the pipeline descriptor cannot be loaded."""


class CancelledError(ShipyardError):
    """An operator cancelled the in-flight attempt."""


class SourceError(ShipyardError):
    """The source repository could not resolve or check out a revision."""
