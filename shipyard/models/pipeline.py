"""Build recipe and health policy models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from shipyard.core.hasher import recipe_hash


class Recipe(BaseModel):
    """An ordered list of shell-level build steps.

    A recipe with zero steps is valid: the artifact is then the raw
    source snapshot.  ``output`` names the directory, relative to the
    checked-out tree, that is packed into the artifact.
    """

    model_config = ConfigDict(frozen=True)

    steps: list[str] = []
    output: str = "."

    @field_validator("output")
    @classmethod
    def _relative_output(cls, value: str) -> str:
        if value.startswith("/") or ".." in value.split("/"):
            raise ValueError(f"recipe output must be a path inside the tree, got {value!r}")
        return value or "."

    @property
    def digest(self) -> str:
        return recipe_hash(list(self.steps), self.output)


class HealthPolicy(BaseModel):
    """How a freshly deployed artifact is judged healthy.

    ``required_passes`` consecutive passing checks, spaced by ``interval``
    seconds, must be observed before ``deadline`` seconds elapse.  A
    failing check is retried with exponential backoff starting at
    ``initial_backoff`` and capped at ``max_backoff`` until
    ``failure_threshold`` consecutive failures have been seen.
    """

    model_config = ConfigDict(frozen=True)

    required_passes: int = 3
    interval: float = 1.0
    initial_backoff: float = 0.5
    max_backoff: float = 8.0
    deadline: float = 30.0
    failure_threshold: int = 2

    @model_validator(mode="after")
    def _check_bounds(self) -> "HealthPolicy":
        if self.required_passes < 1:
            raise ValueError("required_passes must be at least 1")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.deadline <= 0:
            raise ValueError("deadline must be positive")
        if self.initial_backoff < 0 or self.max_backoff < self.initial_backoff:
            raise ValueError("backoff bounds must satisfy 0 <= initial_backoff <= max_backoff")
        if self.interval < 0:
            raise ValueError("interval must not be negative")
        return self
