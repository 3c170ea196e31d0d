"""Run report — the user-visible result of one pipeline run."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from wheelforge.models.attestation import AttestationRecord
from wheelforge.models.publish import PublishOutcome, PublishStatus
from wheelforge.models.states import RunState, TargetResult
from wheelforge.models.trigger import TriggerContext


class RunReport(BaseModel):
    """Terminal state plus per-target and per-artifact reasons."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    trigger: TriggerContext
    state: RunState
    targets: list[TargetResult] = []
    attestation: AttestationRecord | None = None
    outcomes: list[PublishOutcome] = []
    errors: list[str] = []

    @property
    def succeeded(self) -> bool:
        if self.state not in (RunState.PUBLISHED, RunState.SKIPPED_BY_POLICY):
            return False
        return all(o.ok for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def count(self, status: PublishStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)
