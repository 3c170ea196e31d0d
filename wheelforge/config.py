"""Release configuration — env-driven via pydantic-settings.

Reads from a .env file and WHEELFORGE_* environment variables. Secrets
(index token, attestation key) are held as ``SecretStr`` and only turned
into capability grants at the CLI boundary.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from wheelforge.models.config import CapabilityGrants, PipelineConfig


class ReleaseSettings(BaseSettings):
    """Release settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export WHEELFORGE_LOG_LEVEL=DEBUG
        export WHEELFORGE_INDEX_TOKEN=pypi-...
        export WHEELFORGE_ATTESTATION_KEY=<ed25519 seed hex>
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="WHEELFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Storage paths
    work_dir: Path = Path(".wheelforge/work")
    artifact_store_path: Path = Path(".wheelforge/artifacts")
    ledger_path: Path = Path(".wheelforge/ledger.db")
    cache_dir: Path | None = Path(".wheelforge/cache")

    # Pipeline definition
    matrix_path: Path | None = None
    working_directory: Path = Path("bindings/python")
    workflow_path: str = ".github/workflows/python_release.yml"
    backend_executable: str = "maturin"
    max_parallel_builds: int = Field(default=8, ge=1)

    # Publishing
    index_url: str = ""
    local_index_path: Path | None = None
    repository: str = ""

    # Capability grants
    index_token: SecretStr | None = None
    attestation_key: SecretStr | None = None

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            work_dir=self.work_dir,
            artifact_store_path=self.artifact_store_path,
            ledger_db_path=self.ledger_path,
            cache_dir=self.cache_dir,
            working_directory=self.working_directory,
            workflow_path=self.workflow_path,
            max_parallel_builds=self.max_parallel_builds,
        )

    def grants(self) -> CapabilityGrants:
        return CapabilityGrants(
            source_read=True,
            index_token=self.index_token,
            attestation_key=self.attestation_key,
        )
