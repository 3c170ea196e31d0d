"""Release orchestrator — the central coordinator for one pipeline run.

Wires the Target Enumerator, Extension Builders, join barrier, Artifact
Store, Provenance Attestor and Publish Gate together, and drives the run
state machine:

    Pending -> Built -> Attested -> Published | SkippedByPolicy
                (any stage)      -> Failed

Pull-request runs only validate the pipeline definition and never build.
"""

from __future__ import annotations

import fnmatch
import logging
import threading

from wheelforge.core.artifact_store import RunArtifactStore
from wheelforge.core.attestor import ProvenanceAttestor, save_attestation
from wheelforge.core.builder import BuildBackend, ExtensionBuilder, MaturinBackend
from wheelforge.core.compile_cache import CompilationCache
from wheelforge.core.enumerator import enumerate_requests
from wheelforge.core.errors import (
    ConfigurationError,
    PermissionDenied,
    WheelforgeError,
)
from wheelforge.core.join import BuildBarrier
from wheelforge.core.package_index import PackageIndex
from wheelforge.core.publish_gate import BUNDLE_PATTERN, PublishGate, decide
from wheelforge.core.run_ledger import RunLedger
from wheelforge.core.run_machine import RunMachine
from wheelforge.core.toolchain import LocalToolchainProvisioner, ToolchainProvisioner
from wheelforge.models.attestation import AttestationRecord
from wheelforge.models.config import PipelineConfig, RunContext
from wheelforge.models.publish import PublishOutcome, PublishStatus
from wheelforge.models.reports import RunReport
from wheelforge.models.states import RunState, TargetResult
from wheelforge.models.targets import BuildMatrix, BuildRequest
from wheelforge.models.trigger import TriggerKind

logger = logging.getLogger(__name__)


class ReleaseOrchestrator:
    """Runs the release pipeline once for a given run context.

    Parameters
    ----------
    context:
        Run identity, trigger and capability grants.
    config:
        Pipeline configuration. Uses defaults if not provided.
    backend, provisioner:
        Build backend and toolchain provisioner; maturin on the local host
        by default.
    index:
        Package index backend; required only for runs that publish.
    cache:
        Compilation cache; built from ``config.cache_dir`` if omitted.
    ledger:
        Run ledger; opened at ``config.ledger_db_path`` if omitted.
    """

    def __init__(
        self,
        context: RunContext,
        config: PipelineConfig | None = None,
        *,
        backend: BuildBackend | None = None,
        provisioner: ToolchainProvisioner | None = None,
        index: PackageIndex | None = None,
        cache: CompilationCache | None = None,
        ledger: RunLedger | None = None,
    ) -> None:
        self.context = context
        self.config = config or PipelineConfig()
        self.ledger = ledger or RunLedger(self.config.ledger_db_path)
        self.store = RunArtifactStore(self.config.artifact_store_path, context.run_id)
        self.machine = RunMachine(self.ledger, context.run_id)
        self.backend = backend or MaturinBackend()
        self.provisioner = provisioner or LocalToolchainProvisioner()
        if cache is None and self.config.cache_dir is not None:
            cache = CompilationCache(self.config.cache_dir)
        self.cache = cache
        self.index = index

        self._cancel = threading.Event()
        self._run_dir = self.config.work_dir / context.run_id
        self._targets: list[TargetResult] = []
        self._attestation: AttestationRecord | None = None
        self._outcomes: list[PublishOutcome] = []
        self._errors: list[str] = []

    @property
    def run_id(self) -> str:
        return self.context.run_id

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Cancel the run; in-flight builds terminate and nothing publishes."""
        logger.warning("Run %s cancelled", self.run_id)
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------------------------------------------
    # Validation-only path
    # ------------------------------------------------------------------

    def validate(self, matrix: BuildMatrix) -> list[BuildRequest]:
        """Check the pipeline definition without building anything.

        The matrix must enumerate cleanly and every bundle name must be
        picked up by the publish pattern.
        """
        requests = enumerate_requests(matrix, self.context.source_revision or "HEAD")
        stray = [
            r.bundle_name for r in requests
            if not fnmatch.fnmatchcase(r.bundle_name, BUNDLE_PATTERN)
        ]
        if stray:
            raise ConfigurationError(
                f"Bundle names not matched by {BUNDLE_PATTERN!r}: {stray}"
            )
        return requests

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, matrix: BuildMatrix) -> RunReport:
        """Execute the pipeline and return its terminal report."""
        if self.machine.state is not RunState.PENDING:
            raise RuntimeError(f"Run {self.run_id} has already been executed.")

        trigger = self.context.trigger
        logger.info(
            "Run %s started by %s (%s) at %s",
            self.run_id,
            trigger.kind.value,
            trigger.ref_name or "-",
            self.context.source_revision[:12] or "-",
        )
        try:
            if trigger.kind is TriggerKind.PULL_REQUEST:
                self._run_validation(matrix)
            else:
                self._run_release(matrix)
        except (WheelforgeError, OSError) as exc:
            self._errors.append(f"{type(exc).__name__}: {exc}")
            self.machine.fail(f"{type(exc).__name__}: {exc}")
        return self.report()

    def _run_validation(self, matrix: BuildMatrix) -> None:
        workflow = self.context.workflow_path
        if not self.context.trigger.touches(workflow):
            self.machine.transition(
                RunState.SKIPPED_BY_POLICY,
                detail=f"pull request does not modify {workflow}",
            )
            return
        requests = self.validate(matrix)
        self.machine.transition(
            RunState.SKIPPED_BY_POLICY,
            detail=f"validated {len(requests)} target(s); pull requests never publish",
        )

    def _check_grants(self, publishing: bool) -> None:
        grants = self.context.grants
        if not grants.source_read:
            raise PermissionDenied("Run has no read access to the source tree.")
        if not grants.can_write_attestations:
            raise PermissionDenied("Run has no attestation signing key.")
        if publishing and not grants.can_write_index:
            raise PermissionDenied("Run publishes but has no package index token.")
        if publishing and self.index is None:
            raise ConfigurationError("Run publishes but no package index is configured.")

    def _run_release(self, matrix: BuildMatrix) -> None:
        requests = enumerate_requests(matrix, self.context.source_revision)
        decision = decide(self.context)
        self._check_grants(decision.publish)

        # Fan out, then block on the barrier until every request is terminal.
        builder = ExtensionBuilder(
            self.backend,
            self.provisioner,
            self.store,
            work_dir=self._run_dir / "build",
            working_directory=self.config.working_directory,
            build_args=self.config.build_args,
            cache=self.cache,
        )
        barrier = BuildBarrier(
            max_workers=self.config.max_parallel_builds,
            cancel_event=self._cancel,
            on_result=self.machine.record_target,
        )
        joined = barrier.join(requests, builder.build)
        self.store.seal()
        self._targets = joined.targets
        if not joined.succeeded:
            reasons = [
                f"{t.bundle_name}: {t.error_type or t.status.value}: {t.reason}"
                for t in joined.targets
                if not t.succeeded and t.reason
            ]
            self._errors.extend(reasons)
            detail = "cancelled" if self.cancelled and not joined.failures else "build failed"
            self.machine.fail(f"{detail}: {len(joined.failures)} target(s) failed")
            return

        if self.cancelled:
            self.machine.fail("cancelled after builds completed")
            return
        self.machine.transition(
            RunState.BUILT,
            detail=f"{len(requests)} bundle(s) uploaded",
            artifact_references=[r.bundle_name for r in requests],
        )
        if self.cancelled:
            self.machine.fail("cancelled before attestation")
            return

        # Only now, with every request confirmed terminal, read the store.
        bundles = self.store.get_all(BUNDLE_PATTERN)
        attestor = ProvenanceAttestor(self.context)
        record = attestor.attest(bundles, [r.bundle_name for r in requests])
        if self.cancelled:
            self.machine.fail("cancelled before attestation was recorded")
            return
        self.machine.transition(
            RunState.ATTESTED,
            detail=f"statement {record.statement_digest[:16]}",
            artifact_references=[f"sha256:{record.statement_digest}"],
        )
        save_attestation(record, self.store.root / "attestation.json")
        self._attestation = record

        if not decision.publish:
            self.machine.transition(RunState.SKIPPED_BY_POLICY, detail=decision.reason)
            return
        if self.cancelled:
            self.machine.fail("cancelled before publishing")
            return

        gate = PublishGate(self.context, self.index, download_dir=self._run_dir / "download")
        self._outcomes = gate.publish(record, self.store)
        failed = [o for o in self._outcomes if o.status is PublishStatus.FAILED]
        if failed:
            self._errors.extend(f"{o.identity.filename}: {o.reason}" for o in failed)
            self.machine.fail(f"{len(failed)} artifact(s) failed to publish")
            return
        self.machine.transition(
            RunState.PUBLISHED,
            detail=(
                f"{sum(o.status is PublishStatus.PUBLISHED for o in self._outcomes)} published, "
                f"{sum(o.status is PublishStatus.SKIPPED_EXISTING for o in self._outcomes)} "
                "already present"
            ),
        )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def report(self) -> RunReport:
        return RunReport(
            run_id=self.run_id,
            trigger=self.context.trigger,
            state=self.machine.state,
            targets=list(self._targets),
            attestation=self._attestation,
            outcomes=list(self._outcomes),
            errors=list(self._errors),
        )

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of this run's ledger entries."""
        return self.ledger.verify_chain(self.run_id)
