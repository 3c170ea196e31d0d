"""Publish Gate — trigger-conditioned, idempotent publishing.

Decision table:

- ``tag_push``: publish every attested artifact.
- ``manual_dispatch``: publish only when explicitly requested on a tag
  ref; otherwise the run is an attestation-only dry run.
- ``pull_request``: never publishes (the orchestrator stops before the gate).

Publishing is preceded by a preflight that downloads the bundles, resolves
the ``wheels-*/*`` glob and checks every file against the attestation.
Nothing is uploaded unless the whole set verifies. Artifacts the index
already holds are recorded as ``skipped_existing``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from wheelforge.core.artifact_store import RunArtifactStore
from wheelforge.core.errors import PermissionDenied, PublishConflict, PublishError
from wheelforge.core.hasher import sha256_file
from wheelforge.core.package_index import PackageIndex
from wheelforge.models.artifacts import ArtifactIdentity
from wheelforge.models.attestation import AttestationRecord
from wheelforge.models.config import RunContext
from wheelforge.models.publish import PublishDecision, PublishOutcome, PublishStatus
from wheelforge.models.trigger import TriggerKind

logger = logging.getLogger(__name__)

BUNDLE_PATTERN = "wheels-*"
PUBLISH_GLOB = "wheels-*/*"


def decide(context: RunContext) -> PublishDecision:
    """Decide from the trigger whether this run publishes."""
    trigger = context.trigger
    if trigger.kind is TriggerKind.TAG_PUSH:
        return PublishDecision(publish=True, reason=f"tag push {trigger.ref_name}")
    if trigger.kind is TriggerKind.MANUAL_DISPATCH:
        if trigger.publish_requested and trigger.is_tag_ref:
            return PublishDecision(
                publish=True, reason=f"manual dispatch on {trigger.ref_name}"
            )
        if trigger.publish_requested:
            return PublishDecision(
                publish=False,
                reason=f"publish requested but {trigger.ref_name or 'ref'} is not a tag",
            )
        return PublishDecision(publish=False, reason="manual dispatch dry run")
    return PublishDecision(publish=False, reason="pull request validation run")


class PublishGate:
    """Publishes an attested bundle set to a package index.

    Parameters
    ----------
    context:
        Run identity, trigger and grants.
    index:
        The package index backend.
    download_dir:
        Where bundles are materialized before upload.
    """

    def __init__(self, context: RunContext, index: PackageIndex, *, download_dir: Path) -> None:
        self.context = context
        self.index = index
        self.download_dir = Path(download_dir)

    def decide(self) -> PublishDecision:
        return decide(self.context)

    def _preflight(
        self, record: AttestationRecord, store: RunArtifactStore
    ) -> list[tuple[str, Path]]:
        """Download, resolve the publish glob, and verify against the attestation."""
        bundles = store.get_all(BUNDLE_PATTERN)
        if sorted(b.name for b in bundles) != sorted(record.bundle_names):
            raise PublishError("Bundle set in store differs from the attested set.")

        if self.download_dir.exists():
            shutil.rmtree(self.download_dir)
        self.download_dir.mkdir(parents=True)
        store.materialize(BUNDLE_PATTERN, self.download_dir)

        files = sorted(p for p in self.download_dir.glob(PUBLISH_GLOB) if p.is_file())
        if len(files) != len(record.subjects):
            raise PublishError(
                f"{PUBLISH_GLOB} matched {len(files)} file(s) but "
                f"{len(record.subjects)} were attested."
            )

        mismatched: list[str] = []
        resolved: list[tuple[str, Path]] = []
        for path in files:
            bundle_name = path.parent.name
            expected = record.digest_for(bundle_name, path.name)
            if expected is None or sha256_file(path) != expected:
                mismatched.append(f"{bundle_name}/{path.name}")
            resolved.append((bundle_name, path))
        if mismatched:
            raise PublishError(f"Artifacts do not match attestation: {mismatched}")
        return resolved

    def publish(
        self, record: AttestationRecord, store: RunArtifactStore
    ) -> list[PublishOutcome]:
        """Publish every attested artifact, skipping ones the index already has.

        Raises ``PermissionDenied`` without an index token and
        ``PublishError`` if the preflight fails; in both cases nothing is
        uploaded. The first upload failure stops the remaining uploads,
        which are reported as failed.
        """
        decision = self.decide()
        if not decision.publish:
            raise PublishError(f"Publishing not permitted: {decision.reason}")
        if record.run_id != self.context.run_id:
            raise PublishError(
                f"Attestation belongs to run {record.run_id}, not {self.context.run_id}"
            )
        if not self.context.grants.can_write_index:
            raise PermissionDenied("Run has no package index token.")

        artifacts = self._preflight(record, store)
        outcomes: list[PublishOutcome] = []
        halted = ""
        for bundle_name, path in artifacts:
            identity = ArtifactIdentity.from_filename(path.name)
            if halted:
                outcomes.append(
                    PublishOutcome(
                        bundle_name=bundle_name, identity=identity,
                        status=PublishStatus.FAILED, reason=f"not attempted: {halted}",
                    )
                )
                continue
            outcomes.append(self._publish_one(bundle_name, path, identity))
            if outcomes[-1].status is PublishStatus.FAILED:
                halted = outcomes[-1].reason

        logger.info(
            "Publish finished: %d published, %d skipped, %d failed",
            sum(o.status is PublishStatus.PUBLISHED for o in outcomes),
            sum(o.status is PublishStatus.SKIPPED_EXISTING for o in outcomes),
            sum(o.status is PublishStatus.FAILED for o in outcomes),
        )
        return outcomes

    def _publish_one(
        self, bundle_name: str, path: Path, identity: ArtifactIdentity
    ) -> PublishOutcome:
        if self.index.has(identity):
            logger.info("Skipping %s: already on the index", identity)
            return PublishOutcome(
                bundle_name=bundle_name, identity=identity,
                status=PublishStatus.SKIPPED_EXISTING, reason="already on index",
            )
        try:
            self.index.upload(path, identity)
        except PublishConflict as exc:
            logger.info("Skipping %s: %s", identity, exc)
            return PublishOutcome(
                bundle_name=bundle_name, identity=identity,
                status=PublishStatus.SKIPPED_EXISTING, reason=str(exc),
            )
        except (PermissionDenied, PublishError) as exc:
            logger.error("Publishing %s failed: %s", identity, exc)
            return PublishOutcome(
                bundle_name=bundle_name, identity=identity,
                status=PublishStatus.FAILED, reason=f"{type(exc).__name__}: {exc}",
            )
        logger.info("Published %s", identity)
        return PublishOutcome(
            bundle_name=bundle_name, identity=identity, status=PublishStatus.PUBLISHED
        )
