"""Run Ledger entry model (append-only, hash-chained).

One entry per state transition, for the run as a whole (``subject`` is
``"run"``) or for a single target (``subject`` is the bundle name).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

RUN_SUBJECT = "run"


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    subject: str
    state_transition: str  # "from->to", e.g. "pending->built"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    detail: str = ""
    artifact_references: list[str] = []
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry
