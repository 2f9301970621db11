"""Content-addressed artifact model (write-once)."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class Artifact(BaseModel):
    """Metadata for a stored build artifact; the bytes live in the store.

    Artifacts are immutable once stored.  The content_address is both the
    identity and the integrity check.
    """

    model_config = ConfigDict(frozen=True)

    content_address: str  # "sha256:<hex>"
    revision: str
    size_bytes: int
    recipe_hash: str = ""
    build_log: str = ""
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def digest(self) -> str:
        return self.content_address.removeprefix("sha256:")
