"""Artifact Builder — (revision, recipe) -> content-addressed artifact.

Lifecycle of one build:

1. Check the revision out into a scratch directory.
2. Run each recipe step in order through the shell, capturing output
   into the build log.  The first non-zero step aborts the build.
3. Pack ``recipe.output`` into a deterministic tar archive.
4. ``put`` the archive into the Artifact Store.

The scratch directory is always removed, so a failed build leaves no
partial output behind.  Identical source and recipe produce byte-identical
archives and therefore identical artifact hashes.
"""

from __future__ import annotations

import io
import logging
import os
import subprocess
import tarfile
import tempfile
from pathlib import Path

from shipyard.core.artifact_store import ArtifactStore
from shipyard.core.errors import BuildError, SourceError
from shipyard.models.artifacts import Artifact
from shipyard.models.pipeline import Recipe
from shipyard.triggers.sources import SourceRepository

logger = logging.getLogger(__name__)

# Step index used for failures outside the recipe steps (checkout, packing)
SETUP_STEP = -1
TIMEOUT_EXIT_CODE = -1


class ArtifactBuilder:
    """Builds artifacts from a source repository and stores them.

    Parameters
    ----------
    source:
        The repository revisions are checked out from.
    store:
        Where finished artifacts are written.
    step_timeout:
        Wall-clock limit per recipe step, in seconds.
    scratch_root:
        Parent directory for scratch trees.  System temp dir if ``None``.
    """

    def __init__(
        self,
        source: SourceRepository,
        store: ArtifactStore,
        *,
        step_timeout: float = 600.0,
        scratch_root: Path | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._step_timeout = step_timeout
        self._scratch_root = scratch_root

    def build(self, revision: str, recipe: Recipe) -> Artifact:
        """Build ``revision`` with ``recipe`` and return the stored artifact.

        Raises
        ------
        BuildError
            When checkout fails, a step exits non-zero or times out, or the
            declared output directory does not exist.
        StoreError
            When the artifact cannot be written.
        """
        log: list[str] = []
        with tempfile.TemporaryDirectory(prefix="shipyard-build-", dir=self._scratch_root) as scratch:
            tree = Path(scratch) / "src"
            tree.mkdir()
            try:
                self._source.checkout(revision, tree)
            except SourceError as exc:
                log.append(f"checkout {revision}: {exc}\n")
                raise BuildError(SETUP_STEP, 1, "".join(log), command="checkout") from exc

            output_dir = (tree / recipe.output).resolve()
            env = {
                **os.environ,
                "SHIPYARD_REVISION": revision,
                "SHIPYARD_OUTPUT": str(output_dir),
            }
            for index, command in enumerate(recipe.steps):
                log.append(f"$ {command}\n")
                exit_code = self._run_step(command, tree, env, log)
                if exit_code != 0:
                    logger.warning(
                        "Build of %s failed at step %d (%r) with exit code %d",
                        revision, index, command, exit_code,
                    )
                    raise BuildError(index, exit_code, "".join(log), command=command)

            if not output_dir.is_dir():
                log.append(f"output directory {recipe.output!r} does not exist\n")
                raise BuildError(SETUP_STEP, 1, "".join(log), command="package")

            data = pack_tree(output_dir)

        build_log = "".join(log)
        artifact = self._store.put(
            data, revision=revision, build_log=build_log, recipe_hash=recipe.digest
        )
        logger.info(
            "Built %s from revision %s (%d steps)",
            artifact.content_address, revision, len(recipe.steps),
        )
        return artifact

    def _run_step(self, command: str, cwd: Path, env: dict[str, str], log: list[str]) -> int:
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self._step_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            if exc.output:
                log.append(exc.output.decode("utf-8", "replace"))
            log.append(f"step timed out after {self._step_timeout}s\n")
            return TIMEOUT_EXIT_CODE
        except OSError as exc:
            log.append(f"cannot execute step: {exc}\n")
            return 127
        log.append(proc.stdout.decode("utf-8", "replace"))
        return proc.returncode


def pack_tree(root: Path) -> bytes:
    """Pack a directory into a reproducible tar archive.

    Entries are sorted, timestamps zeroed, ownership stripped, and modes
    normalised to 0o755 (directories and executables) or 0o644.
    """
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.GNU_FORMAT) as tar:
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            base = Path(dirpath)
            for name in dirnames + sorted(filenames):
                full = base / name
                arcname = full.relative_to(root).as_posix()
                info = tar.gettarinfo(str(full), arcname=arcname)
                info.mtime = 0
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                if info.isdir() or info.mode & 0o111:
                    info.mode = 0o755
                else:
                    info.mode = 0o644
                if info.isfile():
                    with full.open("rb") as fh:
                        tar.addfile(info, fh)
                else:
                    tar.addfile(info)
    return buf.getvalue()
