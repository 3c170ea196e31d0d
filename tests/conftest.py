"""Shared test fixtures for Wheelforge."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import pytest
from pydantic import SecretStr

from wheelforge.bridge.crypto_bridge import generate_keypair
from wheelforge.core.artifact_store import RunArtifactStore
from wheelforge.core.builder import BuildInvocation
from wheelforge.core.errors import BuildBackendError, RunCancelled, ToolchainUnavailable
from wheelforge.core.orchestrator import ReleaseOrchestrator
from wheelforge.core.package_index import LocalIndex
from wheelforge.core.run_ledger import RunLedger
from wheelforge.core.toolchain import Toolchain, target_triple
from wheelforge.models.config import CapabilityGrants, PipelineConfig, RunContext
from wheelforge.models.targets import TargetDescriptor
from wheelforge.models.trigger import TriggerContext, TriggerKind

REVISION = "3f2a9c1d4b5e6f708192a3b4c5d6e7f809112233"

_PLATFORM_TAGS = {
    "x86_64-pc-windows-msvc": "win_amd64",
    "i686-pc-windows-msvc": "win32",
    "x86_64-apple-darwin": "macosx_10_12_x86_64",
    "aarch64-apple-darwin": "macosx_11_0_arm64",
}


def wheel_name(triple: str, project: str = "tonbo", version: str = "1.2.0") -> str:
    tag = _PLATFORM_TAGS.get(triple, triple.replace("-", "_"))
    return f"{project}-{version}-cp310-abi3-{tag}.whl"


# ---------------------------------------------------------------------------
# Fake build backend and provisioner
# ---------------------------------------------------------------------------


class FakeBackend:
    """Writes one deterministic wheel per invocation instead of compiling.

    Parameters
    ----------
    fail:
        Bundle names whose build raises ``BuildBackendError``.
    hang:
        Bundle names whose build blocks until the run is cancelled.
    produce_nothing:
        Bundle names whose build succeeds without writing a wheel.
    """

    def __init__(
        self,
        *,
        fail: Iterable[str] = (),
        hang: Iterable[str] = (),
        produce_nothing: Iterable[str] = (),
    ) -> None:
        self.fail = set(fail)
        self.hang = set(hang)
        self.produce_nothing = set(produce_nothing)
        self.invocations: list[BuildInvocation] = []
        self._lock = threading.Lock()

    @property
    def built(self) -> list[str]:
        return sorted(inv.request.bundle_name for inv in self.invocations)

    def build(
        self, invocation: BuildInvocation, cancel_event: threading.Event | None = None
    ) -> None:
        name = invocation.request.bundle_name
        with self._lock:
            self.invocations.append(invocation)
        if name in self.hang:
            assert cancel_event is not None
            cancel_event.wait(timeout=10)
            raise RunCancelled(f"Build for {name} cancelled")
        if name in self.fail:
            raise BuildBackendError(f"linker failed for {name}", exit_code=101)
        if name in self.produce_nothing:
            return
        out = invocation.out_dir / wheel_name(invocation.toolchain.target_triple)
        out.write_bytes(
            f"{name}@{invocation.request.source_revision}".encode("utf-8")
        )


class FakeProvisioner:
    """Maps targets to triples without touching the host."""

    def __init__(self, *, unavailable: Iterable[str] = ()) -> None:
        self.unavailable = set(unavailable)

    def provision(self, target: TargetDescriptor) -> Toolchain:
        if target.bundle_name in self.unavailable:
            raise ToolchainUnavailable(f"no toolchain for {target.bundle_name}")
        return Toolchain(target_triple=target_triple(target), backend_executable="maturin")


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "wf-test-run-001"


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def store(tmp_dir: Path, run_id: str) -> RunArtifactStore:
    """Provide a fresh run-scoped artifact store."""
    return RunArtifactStore(tmp_dir / "artifacts", run_id)


@pytest.fixture
def local_index(tmp_dir: Path) -> LocalIndex:
    return LocalIndex(tmp_dir / "index")


@pytest.fixture
def pipeline_config(tmp_dir: Path) -> PipelineConfig:
    return PipelineConfig(
        work_dir=tmp_dir / "work",
        artifact_store_path=tmp_dir / "artifacts",
        ledger_db_path=tmp_dir / "ledger.db",
        cache_dir=None,
        working_directory=tmp_dir,
        max_parallel_builds=4,
    )


@pytest.fixture
def make_wheels(tmp_dir: Path) -> Callable[..., list[Path]]:
    """Factory fixture: write wheel files into a fresh directory."""
    counter = iter(range(1000))

    def _factory(*names: str, payload: bytes | None = None) -> list[Path]:
        folder = tmp_dir / f"wheels-src-{next(counter)}"
        folder.mkdir()
        paths = []
        for name in names:
            path = folder / name
            path.write_bytes(payload if payload is not None else name.encode("utf-8"))
            paths.append(path)
        return paths

    return _factory


# ---------------------------------------------------------------------------
# Keys and run contexts
# ---------------------------------------------------------------------------


@pytest.fixture
def keypair() -> tuple[str, str]:
    """Provide a fresh Ed25519 ``(private_hex, public_hex)`` pair."""
    return generate_keypair()


@pytest.fixture
def full_grants(keypair: tuple[str, str]) -> CapabilityGrants:
    return CapabilityGrants(
        source_read=True,
        index_token=SecretStr("pypi-test-token"),
        attestation_key=SecretStr(keypair[0]),
    )


@pytest.fixture
def make_context(run_id: str, full_grants: CapabilityGrants) -> Callable[..., RunContext]:
    """Factory fixture: build a RunContext with sensible defaults (a tag push)."""

    def _factory(
        kind: TriggerKind = TriggerKind.TAG_PUSH,
        ref_name: str = "refs/tags/v1.2.0",
        *,
        publish_requested: bool = False,
        changed_paths: tuple[str, ...] | None = None,
        grants: CapabilityGrants | None = None,
        **overrides: Any,
    ) -> RunContext:
        fields: dict[str, Any] = {
            "run_id": run_id,
            "source_revision": REVISION,
            "repository": "https://github.com/tonbo-io/tonbo",
            "trigger": TriggerContext(
                kind=kind,
                ref_name=ref_name,
                publish_requested=publish_requested,
                changed_paths=changed_paths,
            ),
            "grants": grants if grants is not None else full_grants,
        }
        fields.update(overrides)
        return RunContext(**fields)

    return _factory


@pytest.fixture
def make_orchestrator(
    pipeline_config: PipelineConfig,
    local_index: LocalIndex,
    make_context: Callable[..., RunContext],
) -> Callable[..., ReleaseOrchestrator]:
    """Factory fixture: an orchestrator wired to fakes and a local index."""

    def _factory(
        context: RunContext | None = None,
        *,
        backend: FakeBackend | None = None,
        provisioner: FakeProvisioner | None = None,
        **kwargs: Any,
    ) -> ReleaseOrchestrator:
        kwargs.setdefault("index", local_index)
        return ReleaseOrchestrator(
            context or make_context(),
            pipeline_config,
            backend=backend or FakeBackend(),
            provisioner=provisioner or FakeProvisioner(),
            **kwargs,
        )

    return _factory


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    """Factory fixture: a FakeBackend with per-bundle failure modes."""
    return FakeBackend


@pytest.fixture
def make_provisioner() -> Callable[..., FakeProvisioner]:
    return FakeProvisioner
