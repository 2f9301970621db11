"""Content-addressed, write-once artifact store.

Storage layout::

    {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat    artifact bytes
    {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.json   metadata sidecar

There is no update.  The only removal path is ``gc()``, which never
touches a hash in the caller's reference set.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from shipyard.core.errors import (
    ArtifactIntegrityError,
    ArtifactNotFoundError,
    StoreError,
)
from shipyard.core.hasher import normalize_address, sha256_hex
from shipyard.models.artifacts import Artifact

logger = logging.getLogger(__name__)


class ArtifactStore:
    """SHA-256 keyed, immutable artifact store.

    Storing the same bytes twice is a no-op that returns the existing
    artifact record.  Reads need no locking; writes go through a
    temporary file and ``os.replace`` so concurrent writers of the same
    content never observe a partial blob.

    Parameters
    ----------
    base_path:
        Root directory for artifact storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    @staticmethod
    def _extract_digest(address: str) -> str:
        """Strip the ``sha256:`` prefix from a content address, if present."""
        return address.removeprefix("sha256:")

    def _blob_path(self, digest: str) -> Path:
        return self._base / digest[:2] / digest[2:4] / f"{digest}.dat"

    def _meta_path(self, digest: str) -> Path:
        return self._base / digest[:2] / digest[2:4] / f"{digest}.json"

    def path_for(self, address: str) -> Path:
        """Return the on-disk path of an artifact's bytes (it must exist)."""
        digest = self._extract_digest(address)
        path = self._blob_path(digest)
        if not path.exists():
            raise ArtifactNotFoundError(f"Artifact not found: {address}")
        return path

    # ------------------------------------------------------------------
    # Put
    # ------------------------------------------------------------------

    def put(
        self,
        data: bytes,
        *,
        revision: str,
        build_log: str = "",
        recipe_hash: str = "",
    ) -> Artifact:
        """Store bytes and return the artifact record.

        If identical bytes already exist, verifies their integrity and
        returns the existing record without rewriting anything.

        Raises
        ------
        ArtifactIntegrityError
            If an existing blob at this address no longer matches its hash.
        StoreError
            On any filesystem failure.
        """
        digest = sha256_hex(data)
        blob = self._blob_path(digest)

        if blob.exists():
            if not self.verify(digest):
                raise ArtifactIntegrityError(
                    f"Existing artifact at {digest} failed integrity check"
                )
            existing = self._read_meta(digest)
            if existing is not None:
                logger.debug("Artifact %s already stored; put is a no-op", digest[:12])
                return existing

        artifact = Artifact(
            content_address=f"sha256:{digest}",
            revision=revision,
            size_bytes=len(data),
            recipe_hash=recipe_hash,
            build_log=build_log,
        )
        try:
            blob.parent.mkdir(parents=True, exist_ok=True)
            if not blob.exists():
                _atomic_write(blob, data)
            _atomic_write(
                self._meta_path(digest),
                artifact.model_dump_json(indent=2).encode("utf-8"),
            )
        except OSError as exc:
            raise StoreError(f"Failed to write artifact {digest}: {exc}") from exc

        logger.info(
            "Stored artifact %s (%d bytes) for revision %s",
            digest[:12], len(data), revision,
        )
        return artifact

    # ------------------------------------------------------------------
    # Get
    # ------------------------------------------------------------------

    def get(self, address: str) -> bytes:
        """Return artifact bytes by content address.

        Parameters
        ----------
        address:
            Either ``"sha256:<hex>"`` or just the hex digest.

        Raises
        ------
        ArtifactNotFoundError
            If nothing is stored under ``address``.
        ArtifactIntegrityError
            If the stored bytes no longer hash to ``address``.
        """
        path = self.path_for(address)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise StoreError(f"Failed to read artifact {address}: {exc}") from exc
        if sha256_hex(data) != self._extract_digest(address):
            raise ArtifactIntegrityError(f"Stored bytes for {address} fail verification")
        return data

    def describe(self, address: str) -> Artifact:
        """Return the metadata record of a stored artifact."""
        digest = self._extract_digest(address)
        if not self._blob_path(digest).exists():
            raise ArtifactNotFoundError(f"Artifact not found: {address}")
        artifact = self._read_meta(digest)
        if artifact is None:
            raise StoreError(f"Artifact {address} has no readable metadata")
        return artifact

    def exists(self, address: str) -> bool:
        return self._blob_path(self._extract_digest(address)).exists()

    def verify(self, address: str) -> bool:
        """Re-hash stored data and compare against the content address."""
        digest = self._extract_digest(address)
        path = self._blob_path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _iter_digests(self) -> Iterator[str]:
        for blob in self._base.glob("??/??/*.dat"):
            yield blob.stem

    def list_all(self) -> list[Artifact]:
        """Return every stored artifact, oldest first."""
        artifacts = [a for d in self._iter_digests() if (a := self._read_meta(d))]
        return sorted(artifacts, key=lambda a: a.created_at)

    def list_by_revision(self, revision: str) -> list[Artifact]:
        """Return the artifacts built from ``revision``, oldest first."""
        return [a for a in self.list_all() if a.revision == revision]

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def gc(
        self,
        referenced: Iterable[str],
        *,
        retention_seconds: float = 0,
        now: datetime | None = None,
    ) -> int:
        """Delete unreferenced artifacts older than the retention window.

        Parameters
        ----------
        referenced:
            Content addresses that must survive: the union of every
            environment's current and desired artifacts.
        retention_seconds:
            Artifacts younger than this survive even if unreferenced.
        now:
            Clock override for tests.

        Returns the number of artifacts freed.
        """
        keep = {self._extract_digest(normalize_address(a)) for a in referenced if a}
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=retention_seconds)

        freed = 0
        for digest in list(self._iter_digests()):
            if digest in keep:
                continue
            meta = self._read_meta(digest)
            if meta is not None and meta.created_at > cutoff:
                continue
            try:
                self._blob_path(digest).unlink(missing_ok=True)
                self._meta_path(digest).unlink(missing_ok=True)
            except OSError as exc:
                raise StoreError(f"Failed to delete artifact {digest}: {exc}") from exc
            freed += 1
            logger.info("GC removed artifact %s", digest[:12])
        return freed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read_meta(self, digest: str) -> Artifact | None:
        path = self._meta_path(digest)
        if not path.exists():
            return None
        try:
            return Artifact.model_validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            logger.warning("Unreadable metadata for artifact %s: %s", digest[:12], exc)
            return None


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
