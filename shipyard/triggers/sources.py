"""Source repository collaborators.

Defines the ``SourceRepository`` Protocol consumed by the builder and the
trigger listener, along with three backends:

1. **GitRepository** — a local git checkout, driven through the ``git``
   binary.
2. **DirectoryRepository** — a plain directory served as one revision whose
   identifier is the hash of its contents (static sites, no VCS).
3. **StaticRepository** — an in-memory revision table for tests and demos.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import subprocess
import tarfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from shipyard.core.errors import SourceError
from shipyard.core.hasher import sha256_hex

logger = logging.getLogger(__name__)


@runtime_checkable
class SourceRepository(Protocol):
    """Protocol for revision sources.

    The pipeline only ever consumes revision identifiers; branches are used
    solely to decide which environments a new revision is for.
    """

    def head(self, branch: str) -> str | None:
        """Return the newest revision on ``branch``, or ``None`` if unknown."""
        ...

    def checkout(self, revision: str, dest: Path) -> None:
        """Materialise the tree at ``revision`` into the empty directory ``dest``.

        Raises ``SourceError`` when the revision cannot be resolved.
        """
        ...


class GitRepository:
    """A local git repository.

    Parameters
    ----------
    path:
        Path to the working copy or bare repository.
    git:
        Name or path of the git executable.
    """

    def __init__(self, path: Path, *, git: str = "git") -> None:
        self._path = Path(path)
        self._git = git

    def _run(self, *args: str) -> bytes:
        cmd = [self._git, "-C", str(self._path), *args]
        try:
            proc = subprocess.run(cmd, capture_output=True, check=False)
        except OSError as exc:
            raise SourceError(f"Cannot execute {self._git}: {exc}") from exc
        if proc.returncode != 0:
            raise SourceError(
                f"git {' '.join(args)} failed ({proc.returncode}): "
                f"{proc.stderr.decode('utf-8', 'replace').strip()}"
            )
        return proc.stdout

    def _resolve(self, ref: str) -> str:
        """Return the commit id ``ref`` names.

        Revisions arrive from webhooks, so anything git could read as an
        option is refused before it reaches the command line.
        """
        if not ref or ref.startswith("-"):
            raise SourceError(f"Invalid git revision {ref!r}")
        out = self._run(
            "rev-parse", "--verify", "--quiet", "--end-of-options", f"{ref}^{{commit}}"
        )
        commit = out.decode("ascii").strip()
        if not commit:
            raise SourceError(f"Unknown git revision {ref!r}")
        return commit

    def head(self, branch: str) -> str | None:
        try:
            return self._resolve(branch)
        except SourceError:
            logger.debug("Branch %s not found in %s", branch, self._path)
            return None

    def checkout(self, revision: str, dest: Path) -> None:
        archive = self._run("archive", "--format=tar", self._resolve(revision))
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:") as tar:
            tar.extractall(dest, filter="data")


class DirectoryRepository:
    """Serve a directory as a single, content-identified revision.

    Every branch resolves to the same revision: ``dir-`` followed by the
    first 16 hex digits of a hash over the directory's relative paths and
    file bytes.  Any edit in the directory therefore yields a new revision.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def _tree_hash(self) -> str:
        if not self._path.is_dir():
            raise SourceError(f"Source directory not found: {self._path}")
        parts: list[bytes] = []
        for root, dirs, files in os.walk(self._path):
            dirs.sort()
            for name in sorted(files):
                full = Path(root) / name
                rel = full.relative_to(self._path).as_posix()
                parts.append(rel.encode("utf-8") + b"\0" + full.read_bytes())
        return sha256_hex(b"\0\0".join(parts))

    def head(self, branch: str) -> str | None:
        return f"dir-{self._tree_hash()[:16]}"

    def checkout(self, revision: str, dest: Path) -> None:
        current = self.head("")
        if revision != current:
            raise SourceError(
                f"Directory source only serves its current revision {current}, "
                f"not {revision}"
            )
        shutil.copytree(self._path, dest, dirs_exist_ok=True, symlinks=True)


class StaticRepository:
    """In-memory revisions: ``revision -> {relative path: content}``.

    ``push()`` records a revision and moves a branch head to it.
    """

    def __init__(self) -> None:
        self._trees: dict[str, dict[str, bytes]] = {}
        self._heads: dict[str, str] = {}

    def push(self, revision: str, files: dict[str, bytes | str], *, branch: str = "main") -> str:
        self._trees[revision] = {
            path: content.encode("utf-8") if isinstance(content, str) else content
            for path, content in files.items()
        }
        self._heads[branch] = revision
        return revision

    def head(self, branch: str) -> str | None:
        return self._heads.get(branch)

    def checkout(self, revision: str, dest: Path) -> None:
        tree = self._trees.get(revision)
        if tree is None:
            raise SourceError(f"Unknown revision: {revision}")
        for rel, content in tree.items():
            target = Path(dest) / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
