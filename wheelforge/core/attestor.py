"""Provenance Attestor — signs the complete bundle set for a run.

The attestor is the join barrier's consumer: it accepts exactly the set
of bundles the enumerator asked for. A missing bundle, or one nobody
asked for, raises ``AttestationIncomplete`` instead of attesting a subset.

The statement follows the in-toto v1 layout with a SLSA provenance
predicate; its canonical JSON bytes are signed with Ed25519.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from wheelforge.bridge.crypto_bridge import (
    key_fingerprint,
    public_key_for,
    sign_data,
    verify_data,
)
from wheelforge.core.errors import AttestationIncomplete, PermissionDenied
from wheelforge.core.hasher import canonical_json_bytes, sha256_hex
from wheelforge.models.artifacts import ArtifactBundle
from wheelforge.models.attestation import (
    PREDICATE_TYPE,
    STATEMENT_TYPE,
    AttestationRecord,
    subject_name,
)
from wheelforge.models.config import RunContext

logger = logging.getLogger(__name__)

BUILD_TYPE = "https://wheelforge.dev/release/v1"


class ProvenanceAttestor:
    """Produces one AttestationRecord per run.

    Parameters
    ----------
    context:
        The run's identity and grants; the signing key comes from
        ``context.grants.attestation_key``.
    builder_id:
        Identifies the pipeline that produced the artifacts.
    """

    def __init__(self, context: RunContext, *, builder_id: str = "") -> None:
        self.context = context
        self.builder_id = builder_id or (
            f"{context.repository}/{context.workflow_path}"
            if context.repository
            else context.workflow_path
        )

    def _statement(self, bundles: list[ArtifactBundle]) -> dict:
        ctx = self.context
        subjects = [
            {"name": subject_name(b.name, f.filename), "digest": {"sha256": f.sha256}}
            for b in bundles
            for f in b.files
        ]
        return {
            "_type": STATEMENT_TYPE,
            "subject": sorted(subjects, key=lambda s: s["name"]),
            "predicateType": PREDICATE_TYPE,
            "predicate": {
                "buildDefinition": {
                    "buildType": BUILD_TYPE,
                    "externalParameters": {
                        "workflow": ctx.workflow_path,
                        "ref": ctx.trigger.ref_name,
                        "trigger": ctx.trigger.kind.value,
                    },
                    "resolvedDependencies": [
                        {
                            "uri": f"git+{ctx.repository}" if ctx.repository else "git",
                            "digest": {"gitCommit": ctx.source_revision},
                        }
                    ],
                },
                "runDetails": {
                    "builder": {"id": self.builder_id},
                    "metadata": {"invocationId": ctx.run_id},
                },
            },
        }

    def attest(
        self, bundles: Iterable[ArtifactBundle], expected_names: Iterable[str]
    ) -> AttestationRecord:
        """Sign *bundles* if and only if they are exactly the expected set."""
        bundles = sorted(bundles, key=lambda b: b.name)
        expected = set(expected_names)
        present = {b.name for b in bundles}

        missing = sorted(expected - present)
        unexpected = sorted(present - expected)
        if missing or unexpected:
            parts = []
            if missing:
                parts.append(f"missing {missing}")
            if unexpected:
                parts.append(f"unexpected {unexpected}")
            raise AttestationIncomplete(
                f"Refusing to attest {len(present)}/{len(expected)} bundle(s): "
                + "; ".join(parts)
            )
        if not expected:
            raise AttestationIncomplete("Refusing to attest an empty bundle set.")

        grants = self.context.grants
        if not grants.can_write_attestations:
            raise PermissionDenied("Run has no attestation signing key.")
        private_key = grants.attestation_key.get_secret_value()
        try:
            public_key = public_key_for(private_key)
        except ValueError as exc:
            raise PermissionDenied(f"Attestation signing key is unusable: {exc}") from exc

        statement = self._statement(bundles)
        payload = canonical_json_bytes(statement)
        record = AttestationRecord(
            run_id=self.context.run_id,
            source_revision=self.context.source_revision,
            bundle_names=[b.name for b in bundles],
            statement=statement,
            statement_digest=sha256_hex(payload),
            signature=sign_data(payload, private_key),
            public_key=public_key,
            key_fingerprint=key_fingerprint(public_key),
        )
        logger.info(
            "Attested %d bundle(s), %d subject(s) at %s (key %s)",
            len(bundles),
            len(statement["subject"]),
            self.context.source_revision[:12],
            record.key_fingerprint,
        )
        return record


def verify_attestation(
    record: AttestationRecord,
    bundles: Iterable[ArtifactBundle] | None = None,
    *,
    trusted_public_key: str | None = None,
) -> bool:
    """Check a record's signature and, if given, that *bundles* match its subjects.

    Returns ``False`` on any mismatch.
    """
    if trusted_public_key is not None and record.public_key != trusted_public_key:
        return False
    payload = canonical_json_bytes(record.statement)
    if sha256_hex(payload) != record.statement_digest:
        return False
    if not verify_data(payload, record.signature, record.public_key):
        return False
    dependencies = (
        record.statement.get("predicate", {})
        .get("buildDefinition", {})
        .get("resolvedDependencies", [])
    )
    commits = {d.get("digest", {}).get("gitCommit") for d in dependencies}
    if record.source_revision not in commits:
        return False

    if bundles is not None:
        attested = {s.name: s.digest.get("sha256") for s in record.subjects}
        actual = {
            subject_name(b.name, f.filename): f.sha256 for b in bundles for f in b.files
        }
        if attested != actual:
            return False
    return True


def save_attestation(record: AttestationRecord, path: Path) -> Path:
    """Write *record* as JSON next to the run's bundles."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
    return path


def load_attestation(path: Path) -> AttestationRecord:
    return AttestationRecord.model_validate_json(Path(path).read_text(encoding="utf-8"))
