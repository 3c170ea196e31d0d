"""Run state machine: Pending -> Built -> Attested -> Published | SkippedByPolicy.

Enforces:
- Valid transitions only (VALID_TRANSITIONS table)
- Terminal states are final; no automatic retries
- Every transition, run-level and per-target, recorded in the Run Ledger
"""

from __future__ import annotations

import logging

from wheelforge.core.run_ledger import RunLedger
from wheelforge.models.ledger import RUN_SUBJECT, LedgerEntry
from wheelforge.models.states import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    RunState,
    TargetResult,
    TargetStatus,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class RunMachine:
    """Tracks one run's state and writes every transition to the ledger.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    run_id:
        The run this machine governs.
    """

    def __init__(self, ledger: RunLedger, run_id: str) -> None:
        self._ledger = ledger
        self.run_id = run_id
        self._state = RunState.PENDING

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(
        self,
        target_state: RunState,
        *,
        detail: str = "",
        artifact_references: list[str] | None = None,
    ) -> LedgerEntry:
        """Move the run to *target_state*, recording the transition.

        Returns the sealed LedgerEntry.
        """
        allowed = VALID_TRANSITIONS.get(self._state, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition run {self.run_id} from {self._state.value} "
                f"to {target_state.value}. Allowed: {sorted(s.value for s in allowed)}"
            )
        entry = self._ledger.append(
            LedgerEntry(
                run_id=self.run_id,
                subject=RUN_SUBJECT,
                state_transition=f"{self._state.value}->{target_state.value}",
                detail=detail,
                artifact_references=artifact_references or [],
            )
        )
        logger.info(
            "Run %s: %s -> %s%s",
            self.run_id,
            self._state.value,
            target_state.value,
            f" ({detail})" if detail else "",
        )
        self._state = target_state
        return entry

    def fail(self, detail: str) -> LedgerEntry | None:
        """Transition to FAILED unless the run is already terminal."""
        if self.is_terminal:
            return None
        return self.transition(RunState.FAILED, detail=detail)

    def record_target(self, result: TargetResult) -> LedgerEntry:
        """Record a target's terminal status."""
        return self._ledger.append(
            LedgerEntry(
                run_id=self.run_id,
                subject=result.bundle_name,
                state_transition=f"{TargetStatus.PENDING.value}->{result.status.value}",
                detail=result.reason,
            )
        )
