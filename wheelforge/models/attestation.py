"""Provenance attestation models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

STATEMENT_TYPE = "https://in-toto.io/Statement/v1"
PREDICATE_TYPE = "https://slsa.dev/provenance/v1"


def subject_name(bundle_name: str, filename: str) -> str:
    """Subject names mirror the downloaded ``wheels-*/*`` layout."""
    return f"{bundle_name}/{filename}"


class AttestationSubject(BaseModel):
    """One attested file: its name and digest."""

    model_config = ConfigDict(frozen=True)

    name: str
    digest: dict[str, str]


class AttestationRecord(BaseModel):
    """A signed statement binding a complete bundle set to a source revision.

    ``statement`` is the in-toto statement whose canonical JSON bytes were
    signed; ``statement_digest`` is their SHA-256. Records are created once
    per run and never reused.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    source_revision: str
    bundle_names: list[str]
    statement: dict[str, Any]
    statement_digest: str
    signature: str
    public_key: str
    key_fingerprint: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def subjects(self) -> list[AttestationSubject]:
        return [AttestationSubject(**s) for s in self.statement.get("subject", [])]

    def digest_for(self, bundle_name: str, filename: str) -> str | None:
        wanted = subject_name(bundle_name, filename)
        for subject in self.subjects:
            if subject.name == wanted:
                return subject.digest.get("sha256")
        return None
