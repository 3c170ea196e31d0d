"""Adversarial tests — run ledger tampering and state machine bypass.

These tests verify that the Run Ledger detects:
1. Corrupted entry hashes (tampered content)
2. Rewritten transitions (e.g. a failed run relabelled as published)
3. Broken chain links (deleted entries)
"""

from __future__ import annotations

import sqlite3

import pytest

from wheelforge.core.run_ledger import LedgerIntegrityError, RunLedger
from wheelforge.core.run_machine import InvalidTransitionError, RunMachine
from wheelforge.models.states import RunState
from wheelforge.models.targets import DEFAULT_MATRIX


def _execute(ledger: RunLedger, sql: str, params: tuple) -> None:
    conn = sqlite3.connect(str(ledger._db_path))
    conn.execute(sql, params)
    conn.commit()
    conn.close()


class TestLedgerTamperDetection:
    """Direct SQLite manipulation to simulate an attacker with DB access."""

    @pytest.fixture
    def failed_run(self, make_orchestrator, make_backend) -> tuple[RunLedger, str]:
        """A real run that failed on one target."""
        orch = make_orchestrator(backend=make_backend(fail={"wheels-windows-x86"}))
        report = orch.run(DEFAULT_MATRIX)
        assert report.state is RunState.FAILED
        return orch.ledger, orch.run_id

    def test_untampered_chain_valid(self, failed_run):
        ledger, run_id = failed_run
        assert ledger.verify_chain(run_id) is True

    def test_failure_relabelled_as_published(self, failed_run):
        """Rewrite the terminal transition. Hash recomputation must detect it."""
        ledger, run_id = failed_run
        _execute(
            ledger,
            "UPDATE run_ledger SET state_transition = 'attested->published' "
            "WHERE run_id = ? AND state_transition = 'pending->failed' AND subject = 'run'",
            (run_id,),
        )
        with pytest.raises(LedgerIntegrityError, match="Tampered"):
            ledger.verify_chain(run_id)

    def test_corrupted_entry_hash(self, failed_run):
        ledger, run_id = failed_run
        _execute(
            ledger,
            "UPDATE run_ledger SET entry_hash = 'TAMPERED' "
            "WHERE id = (SELECT id FROM run_ledger WHERE run_id = ? ORDER BY id ASC LIMIT 1)",
            (run_id,),
        )
        with pytest.raises(LedgerIntegrityError, match="(Chain broken|Tampered)"):
            ledger.verify_chain(run_id)

    def test_deleted_target_failure(self, failed_run):
        """Delete the failed target's record. Chain linkage must fail."""
        ledger, run_id = failed_run
        _execute(
            ledger,
            "DELETE FROM run_ledger WHERE run_id = ? AND subject = 'wheels-windows-x86'",
            (run_id,),
        )
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            ledger.verify_chain(run_id)


class TestStateMachineBypass:
    def test_no_publish_without_attestation(self, ledger: RunLedger):
        machine = RunMachine(ledger, "run-bypass")
        machine.transition(RunState.BUILT)
        with pytest.raises(InvalidTransitionError):
            machine.transition(RunState.PUBLISHED)

    def test_no_resurrection_after_failure(self, ledger: RunLedger):
        machine = RunMachine(ledger, "run-bypass")
        machine.fail("build failed")
        with pytest.raises(InvalidTransitionError):
            machine.transition(RunState.BUILT)
        assert [e.state_transition for e in ledger.get_run_entries("run-bypass")] == [
            "pending->failed"
        ]
