"""Environment Registry — the only mutable, externally visible state.

One SQLite row per deployment environment.  WAL journal mode so the CLI
can read status while a controller process is writing.

``current_artifact`` has exactly one writer, ``commit()``, which the
Rollout Controller calls after a successful or rolled-back transition.
Leases give cross-process mutual exclusion: at most one owner may drive
an environment at a time.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from shipyard.core.errors import StoreError, UnknownEnvironmentError
from shipyard.models.environments import Environment, HealthStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_ENVIRONMENTS = """
CREATE TABLE IF NOT EXISTS environments (
    name                TEXT PRIMARY KEY,
    branch              TEXT NOT NULL DEFAULT 'main',
    current_artifact    TEXT,
    desired_artifact    TEXT,
    health_status       TEXT NOT NULL DEFAULT 'unknown',
    last_transition_at  TEXT,
    last_seen_revision  TEXT,
    cancel_requested    INTEGER NOT NULL DEFAULT 0,
    lease_owner         TEXT,
    lease_expires_at    TEXT
);
"""

_COLUMNS = (
    "name, branch, current_artifact, desired_artifact, health_status, "
    "last_transition_at, last_seen_revision, cancel_requested, lease_owner, "
    "lease_expires_at"
)


class EnvironmentRegistry:
    """SQLite-backed registry of deployment environments.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    lease_ttl:
        Seconds a lease stays valid without ``renew()``.  A lease past its
        expiry may be taken by any owner, so a crashed process does not
        hold an environment forever.  ``None`` means leases never expire.
    """

    def __init__(self, db_path: Path, *, lease_ttl: float | None = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.lease_ttl = lease_ttl
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_ENVIRONMENTS)
            columns = {row[1] for row in conn.execute("PRAGMA table_info(environments)")}
            if "lease_expires_at" not in columns:
                conn.execute("ALTER TABLE environments ADD COLUMN lease_expires_at TEXT")
            conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement and return the affected row count."""
        try:
            with self._lock, self._connect() as conn:
                cur = conn.execute(sql, params)
                conn.commit()
                return cur.rowcount
        except sqlite3.Error as exc:
            raise StoreError(f"Environment registry write failed: {exc}") from exc

    def _update(self, name: str, sql: str, params: tuple = ()) -> None:
        if self._execute(sql, (*params, name)) == 0:
            raise UnknownEnvironmentError(f"Unknown environment: {name}")

    # ------------------------------------------------------------------
    # Declarative setup
    # ------------------------------------------------------------------

    def ensure(self, name: str, branch: str = "main") -> bool:
        """Create ``name`` if absent.  Returns ``True`` if it was created.

        An existing environment keeps its artifacts and health; only its
        branch is brought in line with the declaration.
        """
        created = self._execute(
            "INSERT OR IGNORE INTO environments (name, branch) VALUES (?, ?)",
            (name, branch),
        ) > 0
        if not created:
            self._execute(
                "UPDATE environments SET branch = ? WHERE name = ?", (branch, name)
            )
        else:
            logger.info("Registered environment %s (branch %s)", name, branch)
        return created

    def reconcile(self, declared: Iterable[tuple[str, str]]) -> list[str]:
        """Idempotently bring the registry in line with declared environments.

        Parameters
        ----------
        declared:
            ``(name, branch)`` pairs, typically from the pipeline descriptor.

        Returns the names that were newly created.  Environments that are
        registered but no longer declared are left alone; deleting one would
        discard the record of what is running there.
        """
        return [name for name, branch in declared if self.ensure(name, branch)]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> Environment | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM environments WHERE name = ?", (name,)
            ).fetchone()
        return self._row_to_environment(row) if row else None

    def require(self, name: str) -> Environment:
        env = self.get(name)
        if env is None:
            raise UnknownEnvironmentError(f"Unknown environment: {name}")
        return env

    def list(self) -> list[Environment]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM environments ORDER BY name"
            ).fetchall()
        return [self._row_to_environment(row) for row in rows]

    def referenced_artifacts(self) -> set[str]:
        """Union of every environment's current and desired artifacts."""
        refs: set[str] = set()
        for env in self.list():
            if env.current_artifact:
                refs.add(env.current_artifact)
            if env.desired_artifact:
                refs.add(env.desired_artifact)
        return refs

    # ------------------------------------------------------------------
    # Artifact pointers
    # ------------------------------------------------------------------

    def set_desired(self, name: str, artifact: str) -> None:
        self._update(
            name, "UPDATE environments SET desired_artifact = ? WHERE name = ?", (artifact,)
        )

    def clear_desired(self, name: str) -> None:
        self._update(name, "UPDATE environments SET desired_artifact = NULL WHERE name = ?")

    def commit(self, name: str, artifact: str | None, health: HealthStatus) -> None:
        """Record the artifact now running in ``name`` and clear the desired pointer."""
        self._update(
            name,
            "UPDATE environments SET current_artifact = ?, desired_artifact = NULL, "
            "health_status = ?, last_transition_at = ? WHERE name = ?",
            (artifact, health.value, _now()),
        )

    def set_health(self, name: str, health: HealthStatus) -> None:
        self._update(
            name,
            "UPDATE environments SET health_status = ?, last_transition_at = ? WHERE name = ?",
            (health.value, _now()),
        )

    # ------------------------------------------------------------------
    # Trigger bookkeeping
    # ------------------------------------------------------------------

    def record_seen_revision(self, name: str, revision: str) -> None:
        self._update(
            name, "UPDATE environments SET last_seen_revision = ? WHERE name = ?", (revision,)
        )

    def last_seen_revision(self, name: str) -> str | None:
        return self.require(name).last_seen_revision

    # ------------------------------------------------------------------
    # Leases and cancellation
    # ------------------------------------------------------------------

    def acquire(self, name: str, owner: str, *, now: datetime | None = None) -> bool:
        """Take the environment lease.

        Returns ``False`` while any live lease exists, including one held
        by ``owner`` itself: a lease covers exactly one attempt.  An
        expired lease is taken over.
        """
        previous = self.require(name)
        now = now or datetime.now(timezone.utc)
        acquired = self._execute(
            "UPDATE environments SET lease_owner = ?, lease_expires_at = ?, "
            "cancel_requested = 0 WHERE name = ? AND (lease_owner IS NULL "
            "OR (lease_expires_at IS NOT NULL AND lease_expires_at < ?))",
            (owner, self._expiry(now), name, _stamp(now)),
        ) > 0
        if not acquired:
            logger.info("Lease on %s refused to %s", name, owner)
        elif previous.lease_owner is not None:
            logger.warning(
                "Took over expired lease on %s from %s", name, previous.lease_owner
            )
        return acquired

    def renew(self, name: str, owner: str, *, now: datetime | None = None) -> bool:
        """Push back the expiry of ``owner``'s lease.  ``False`` if it was lost."""
        now = now or datetime.now(timezone.utc)
        return self._execute(
            "UPDATE environments SET lease_expires_at = ? WHERE name = ? AND lease_owner = ?",
            (self._expiry(now), name, owner),
        ) > 0

    def release(self, name: str, owner: str) -> None:
        self._execute(
            "UPDATE environments SET lease_owner = NULL, lease_expires_at = NULL "
            "WHERE name = ? AND lease_owner = ?",
            (name, owner),
        )

    def break_lease(self, name: str) -> None:
        """Forcibly clear a lease left behind by a crashed process."""
        self._update(
            name,
            "UPDATE environments SET lease_owner = NULL, lease_expires_at = NULL "
            "WHERE name = ?",
        )
        logger.warning("Lease on %s forcibly cleared", name)

    def _expiry(self, now: datetime) -> str | None:
        if self.lease_ttl is None:
            return None
        return _stamp(now + timedelta(seconds=self.lease_ttl))

    def request_cancel(self, name: str) -> None:
        self._update(name, "UPDATE environments SET cancel_requested = 1 WHERE name = ?")

    def cancel_requested(self, name: str) -> bool:
        env = self.get(name)
        return bool(env and env.cancel_requested)

    def clear_cancel(self, name: str) -> None:
        self._update(name, "UPDATE environments SET cancel_requested = 0 WHERE name = ?")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_environment(row: tuple) -> Environment:
        (
            name,
            branch,
            current_artifact,
            desired_artifact,
            health_status,
            last_transition_at,
            last_seen_revision,
            cancel_requested,
            lease_owner,
            lease_expires_at,
        ) = row
        return Environment(
            name=name,
            branch=branch,
            current_artifact=current_artifact,
            desired_artifact=desired_artifact,
            health_status=HealthStatus(health_status),
            last_transition_at=last_transition_at,
            last_seen_revision=last_seen_revision,
            cancel_requested=bool(cancel_requested),
            lease_owner=lease_owner,
            lease_expires_at=lease_expires_at,
        )


def _now() -> str:
    return _stamp(datetime.now(timezone.utc))


def _stamp(moment: datetime) -> str:
    # Fixed-width UTC text so lease expiries compare correctly in SQL
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")
