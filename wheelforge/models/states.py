"""Run and target state models — deterministic transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class RunState(str, Enum):
    """Terminal state machine for one pipeline run."""

    PENDING = "pending"
    BUILT = "built"
    ATTESTED = "attested"
    PUBLISHED = "published"
    SKIPPED_BY_POLICY = "skipped_by_policy"
    FAILED = "failed"


# Valid run transitions — enforced structurally by RunMachine.
# PUBLISHED, SKIPPED_BY_POLICY and FAILED are terminal; a failed run is
# re-triggered as a new run, never retried in place.
VALID_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.PENDING: {RunState.BUILT, RunState.FAILED, RunState.SKIPPED_BY_POLICY},
    RunState.BUILT: {RunState.ATTESTED, RunState.FAILED},
    RunState.ATTESTED: {
        RunState.PUBLISHED,
        RunState.SKIPPED_BY_POLICY,
        RunState.FAILED,
    },
    RunState.PUBLISHED: set(),
    RunState.SKIPPED_BY_POLICY: set(),
    RunState.FAILED: set(),
}

TERMINAL_STATES = frozenset(
    {RunState.PUBLISHED, RunState.SKIPPED_BY_POLICY, RunState.FAILED}
)


class TargetStatus(str, Enum):
    """Status of a single build request."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TargetResult(BaseModel):
    """Terminal report for one build request."""

    model_config = ConfigDict(frozen=True)

    bundle_name: str
    status: TargetStatus
    error_type: str = ""
    reason: str = ""
    cache_warm: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is TargetStatus.SUCCEEDED
