"""Append-only, hash-chained audit log of completed rollout attempts.

Design:
- Append-only: ``append()`` is the only write; no update, no delete.
- Hash-chained per environment: each record seals the hash of the
  environment's previous record, so a rewritten or removed attempt is
  detected by ``verify_chain()``.
- WAL journal mode for concurrent readers (``shipyard history``).

A failed append raises ``AuditWriteError``.  Callers must let it
propagate: losing audit history is worse than crashing loudly.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path

from shipyard.core.errors import AuditIntegrityError, AuditWriteError
from shipyard.core.hasher import compute_record_hash
from shipyard.models.rollouts import AuditRecord, RolloutAttempt

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_AUDIT = """
CREATE TABLE IF NOT EXISTS rollout_audit (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    attempt_id            TEXT NOT NULL UNIQUE,
    environment           TEXT NOT NULL,
    sequence              INTEGER NOT NULL,
    outcome               TEXT NOT NULL,
    attempt_json          TEXT NOT NULL,
    previous_record_hash  TEXT NOT NULL DEFAULT '',
    record_hash           TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_ENV = """
CREATE INDEX IF NOT EXISTS idx_audit_env ON rollout_audit(environment, id);
"""


class AuditLog:
    """Append-only, hash-chained record of rollout attempts.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Serialises read-latest-then-insert so chains never fork in-process
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_AUDIT)
            conn.execute(_CREATE_IDX_ENV)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, attempt: RolloutAttempt) -> AuditRecord:
        """Seal a completed attempt and append it to its environment's chain.

        Raises
        ------
        AuditWriteError
            If the attempt is not finished or the record cannot be written.
        """
        if not attempt.finished:
            raise AuditWriteError(
                f"Attempt {attempt.attempt_id} has no outcome; only completed "
                "attempts are audited"
            )

        try:
            with self._lock, self._connect() as conn:
                # IMMEDIATE takes the write lock before reading the chain head
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute(
                    "SELECT sequence, record_hash FROM rollout_audit "
                    "WHERE environment = ? ORDER BY id DESC LIMIT 1",
                    (attempt.environment,),
                ).fetchone()
                sequence, previous_hash = (row[0] + 1, row[1]) if row else (1, "")

                record = AuditRecord(
                    attempt=attempt,
                    sequence=sequence,
                    previous_record_hash=previous_hash,
                )
                record_hash = compute_record_hash(record.model_dump(mode="json"))
                sealed = record.model_copy(update={"record_hash": record_hash})

                conn.execute(
                    """
                    INSERT INTO rollout_audit
                        (attempt_id, environment, sequence, outcome, attempt_json,
                         previous_record_hash, record_hash)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        attempt.attempt_id,
                        attempt.environment,
                        sequence,
                        attempt.outcome.value,
                        attempt.model_dump_json(),
                        previous_hash,
                        record_hash,
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise AuditWriteError(
                f"Failed to append attempt {attempt.attempt_id} to audit log: {exc}"
            ) from exc

        logger.info(
            "Audited attempt %s on %s: %s",
            attempt.attempt_id, attempt.environment, attempt.outcome.value,
        )
        return sealed

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def history(self, environment: str, limit: int | None = None) -> list[AuditRecord]:
        """Return the environment's records, newest first."""
        sql = (
            "SELECT sequence, attempt_json, previous_record_hash, record_hash "
            "FROM rollout_audit WHERE environment = ? ORDER BY id DESC"
        )
        params: tuple = (environment,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (environment, max(limit, 0))
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def latest(self, environment: str) -> AuditRecord | None:
        records = self.history(environment, limit=1)
        return records[0] if records else None

    def environments(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT environment FROM rollout_audit ORDER BY environment"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, environment: str) -> bool:
        """Verify the hash chain for one environment.

        Walks every record oldest first, recomputes each record hash and
        checks the ``previous_record_hash`` links and sequence numbers.

        Returns ``True`` if intact, raises ``AuditIntegrityError`` otherwise.
        """
        records = list(reversed(self.history(environment)))
        prev_hash = ""
        for expected_seq, record in enumerate(records, start=1):
            attempt_id = record.attempt.attempt_id
            if record.sequence != expected_seq:
                raise AuditIntegrityError(
                    f"Sequence gap at attempt {attempt_id}: expected "
                    f"{expected_seq}, got {record.sequence}"
                )
            if record.previous_record_hash != prev_hash:
                raise AuditIntegrityError(
                    f"Chain broken at attempt {attempt_id}: expected "
                    f"previous_hash={prev_hash!r}, got {record.previous_record_hash!r}"
                )
            expected_hash = compute_record_hash(record.model_dump(mode="json"))
            if record.record_hash != expected_hash:
                raise AuditIntegrityError(
                    f"Tampered attempt {attempt_id}: expected hash="
                    f"{expected_hash!r}, got {record.record_hash!r}"
                )
            prev_hash = record.record_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: tuple) -> AuditRecord:
        sequence, attempt_json, previous_record_hash, record_hash = row
        return AuditRecord(
            attempt=RolloutAttempt.model_validate_json(attempt_json),
            sequence=sequence,
            previous_record_hash=previous_record_hash,
            record_hash=record_hash,
        )
