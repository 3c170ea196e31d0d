"""Pipeline and run configuration models."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from wheelforge.models.trigger import TriggerContext

DEFAULT_BUILD_ARGS: tuple[str, ...] = (
    "--release",
    "--bindings",
    "pyo3",
    "--features=pyo3/extension-module",
)


def _new_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"wf-{ts}-{uuid.uuid4().hex[:6]}"


class PipelineConfig(BaseModel):
    """Project-level configuration for the release pipeline."""

    model_config = ConfigDict(frozen=True)

    project_name: str = "wheelforge"
    work_dir: Path = Path(".wheelforge/work")
    artifact_store_path: Path = Path(".wheelforge/artifacts")
    ledger_db_path: Path = Path(".wheelforge/ledger.db")
    cache_dir: Path | None = Path(".wheelforge/cache")
    working_directory: Path = Path("bindings/python")
    workflow_path: str = ".github/workflows/python_release.yml"
    build_args: tuple[str, ...] = DEFAULT_BUILD_ARGS
    max_parallel_builds: int = Field(default=8, ge=1)


class CapabilityGrants(BaseModel):
    """Capabilities granted to a run.

    A run that reaches publishing needs all three; validation-only and
    dry runs need only ``source_read`` (plus the attestation key for
    dry runs that attest).
    """

    model_config = ConfigDict(frozen=True)

    source_read: bool = True
    index_token: SecretStr | None = None
    attestation_key: SecretStr | None = None

    @property
    def can_write_index(self) -> bool:
        return self.index_token is not None and bool(self.index_token.get_secret_value())

    @property
    def can_write_attestations(self) -> bool:
        return self.attestation_key is not None and bool(
            self.attestation_key.get_secret_value()
        )


class RunContext(BaseModel):
    """Run identity and capabilities, passed explicitly to every component."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=_new_run_id)
    source_revision: str
    repository: str = ""
    workflow_path: str = ".github/workflows/python_release.yml"
    trigger: TriggerContext
    grants: CapabilityGrants = CapabilityGrants()

    @classmethod
    def from_github_env(
        cls,
        environ: Mapping[str, str],
        *,
        grants: CapabilityGrants | None = None,
        workflow_path: str | None = None,
    ) -> RunContext:
        """Build a run context from the GitHub Actions environment."""
        run_id = environ.get("GITHUB_RUN_ID")
        fields: dict = {
            "source_revision": environ.get("GITHUB_SHA", ""),
            "repository": environ.get("GITHUB_REPOSITORY", ""),
            "trigger": TriggerContext.from_github_env(environ),
            "grants": grants or CapabilityGrants(),
        }
        if run_id:
            fields["run_id"] = f"gh-{run_id}-{environ.get('GITHUB_RUN_ATTEMPT', '1')}"
        if workflow_path:
            fields["workflow_path"] = workflow_path
        return cls(**fields)
