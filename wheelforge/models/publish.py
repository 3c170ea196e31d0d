"""Publish gate models — decisions and per-artifact outcomes."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from wheelforge.models.artifacts import ArtifactIdentity


class PublishStatus(str, Enum):
    PUBLISHED = "published"
    SKIPPED_EXISTING = "skipped_existing"
    FAILED = "failed"


class PublishOutcome(BaseModel):
    """Terminal publish result for one artifact file."""

    model_config = ConfigDict(frozen=True)

    bundle_name: str
    identity: ArtifactIdentity
    status: PublishStatus
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not PublishStatus.FAILED


class PublishDecision(BaseModel):
    """What the gate decided to do for a trigger."""

    model_config = ConfigDict(frozen=True)

    publish: bool
    reason: str
