"""Pydantic models for the wheelforge release pipeline."""

from wheelforge.models.artifacts import ArtifactBundle, ArtifactIdentity, BundleFile
from wheelforge.models.attestation import AttestationRecord
from wheelforge.models.config import CapabilityGrants, PipelineConfig, RunContext
from wheelforge.models.publish import PublishDecision, PublishOutcome, PublishStatus
from wheelforge.models.reports import RunReport
from wheelforge.models.states import RunState, TargetResult, TargetStatus
from wheelforge.models.targets import (
    DEFAULT_MATRIX,
    BuildMatrix,
    BuildRequest,
    TargetDescriptor,
    TargetFamily,
)
from wheelforge.models.trigger import TriggerContext, TriggerKind

__all__ = [
    "ArtifactBundle",
    "ArtifactIdentity",
    "AttestationRecord",
    "BuildMatrix",
    "BuildRequest",
    "BundleFile",
    "CapabilityGrants",
    "DEFAULT_MATRIX",
    "PipelineConfig",
    "PublishDecision",
    "PublishOutcome",
    "PublishStatus",
    "RunContext",
    "RunReport",
    "RunState",
    "TargetDescriptor",
    "TargetFamily",
    "TargetResult",
    "TargetStatus",
    "TriggerContext",
    "TriggerKind",
]
