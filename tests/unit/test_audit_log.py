"""Tests for AuditLog — append-only, per-environment hash chains."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipyard.core.audit_log import AuditLog
from shipyard.core.errors import AuditWriteError
from shipyard.models.rollouts import AttemptOutcome, RolloutAttempt


def _finished(environment: str = "prod", revision: str = "A", outcome=AttemptOutcome.SUCCEEDED) -> RolloutAttempt:
    return RolloutAttempt(environment=environment, revision=revision, outcome=outcome)


class TestAuditLog:
    def test_append_seals_record(self, audit_log: AuditLog):
        record = audit_log.append(_finished())
        assert record.sequence == 1
        assert record.previous_record_hash == ""
        assert len(record.record_hash) == 64

    def test_chain_links(self, audit_log: AuditLog):
        first = audit_log.append(_finished(revision="A"))
        second = audit_log.append(_finished(revision="B"))
        assert second.sequence == 2
        assert second.previous_record_hash == first.record_hash

    def test_chains_are_per_environment(self, audit_log: AuditLog):
        audit_log.append(_finished("prod"))
        staging = audit_log.append(_finished("staging"))
        assert staging.sequence == 1
        assert staging.previous_record_hash == ""
        assert audit_log.environments() == ["prod", "staging"]

    def test_unfinished_attempt_rejected(self, audit_log: AuditLog):
        with pytest.raises(AuditWriteError):
            audit_log.append(RolloutAttempt(environment="prod", revision="A"))
        assert audit_log.history("prod") == []

    def test_history_newest_first(self, audit_log: AuditLog):
        for rev in ("A", "B", "C"):
            audit_log.append(_finished(revision=rev))
        assert [r.attempt.revision for r in audit_log.history("prod")] == ["C", "B", "A"]
        assert [r.attempt.revision for r in audit_log.history("prod", limit=2)] == ["C", "B"]
        assert audit_log.latest("prod").attempt.revision == "C"

    def test_latest_empty(self, audit_log: AuditLog):
        assert audit_log.latest("prod") is None

    def test_history_round_trips_attempt(self, audit_log: AuditLog):
        attempt = _finished(outcome=AttemptOutcome.ROLLED_BACK)
        attempt.reason = "2 consecutive health checks failed"
        attempt.to_artifact = "sha256:" + "a" * 64
        audit_log.append(attempt)
        stored = audit_log.latest("prod").attempt
        assert stored.attempt_id == attempt.attempt_id
        assert stored.outcome == AttemptOutcome.ROLLED_BACK
        assert stored.reason == attempt.reason
        assert stored.to_artifact == attempt.to_artifact

    def test_verify_chain_intact(self, audit_log: AuditLog):
        for rev in ("A", "B", "C"):
            audit_log.append(_finished(revision=rev))
        assert audit_log.verify_chain("prod") is True
        assert audit_log.verify_chain("empty") is True

    def test_persists_across_instances(self, audit_log: AuditLog, tmp_dir: Path):
        audit_log.append(_finished(revision="A"))
        reopened = AuditLog(tmp_dir / "audit.db")
        record = reopened.append(_finished(revision="B"))
        assert record.sequence == 2
        assert reopened.verify_chain("prod")

    def test_duplicate_attempt_id_rejected(self, audit_log: AuditLog):
        attempt = _finished()
        audit_log.append(attempt)
        with pytest.raises(AuditWriteError):
            audit_log.append(attempt)
