"""Extension Builder — runs one build request and uploads its bundle.

Lifecycle for one request:

    provision toolchain -> lease cache (best-effort) -> invoke backend
        -> collect wheels -> upload bundle

Each request gets a fresh, private output directory; builders share no
mutable state. A bundle is uploaded only after the backend succeeded and
produced at least one wheel, so failures never leave a partial bundle.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from wheelforge.core.artifact_store import RunArtifactStore
from wheelforge.core.compile_cache import CompilationCache
from wheelforge.core.errors import BuildBackendError, CacheMiss, RunCancelled
from wheelforge.core.toolchain import Toolchain, ToolchainProvisioner
from wheelforge.models.artifacts import ArtifactBundle
from wheelforge.models.config import DEFAULT_BUILD_ARGS
from wheelforge.models.targets import BuildRequest

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.5
_LOG_TAIL_LINES = 20


@dataclass(frozen=True)
class BuildInvocation:
    """Everything the backend needs for one build, fully resolved."""

    request: BuildRequest
    toolchain: Toolchain
    working_directory: Path
    out_dir: Path
    log_path: Path
    args: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class BuildBackend(Protocol):
    """Protocol for build backends.

    ``build`` writes wheels into ``invocation.out_dir`` and raises
    ``BuildBackendError`` on failure or ``RunCancelled`` if
    *cancel_event* is set while it runs.
    """

    def build(
        self, invocation: BuildInvocation, cancel_event: threading.Event | None = None
    ) -> None:
        ...


class MaturinBackend:
    """Runs ``maturin build`` as a subprocess, logging to the invocation's log file."""

    def __init__(self, *, timeout_seconds: int = 3600) -> None:
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def command(invocation: BuildInvocation) -> list[str]:
        return [
            invocation.toolchain.backend_executable,
            "build",
            *invocation.args,
            "--out",
            str(invocation.out_dir),
            "--target",
            invocation.toolchain.target_triple,
        ]

    def build(
        self, invocation: BuildInvocation, cancel_event: threading.Event | None = None
    ) -> None:
        cmd = self.command(invocation)
        env = {**os.environ, **invocation.toolchain.env, **invocation.env}
        logger.info("Running %s in %s", " ".join(cmd), invocation.working_directory)

        deadline = time.monotonic() + self.timeout_seconds
        with invocation.log_path.open("w", encoding="utf-8") as log:
            try:
                proc = subprocess.Popen(
                    cmd,
                    cwd=invocation.working_directory,
                    env=env,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                )
            except OSError as exc:
                raise BuildBackendError(f"Failed to start build backend: {exc}") from exc

            while True:
                try:
                    exit_code = proc.wait(timeout=_POLL_SECONDS)
                    break
                except subprocess.TimeoutExpired:
                    if cancel_event is not None and cancel_event.is_set():
                        proc.kill()
                        proc.wait()
                        raise RunCancelled(
                            f"Build for {invocation.request.bundle_name} cancelled"
                        ) from None
                    if time.monotonic() > deadline:
                        proc.kill()
                        proc.wait()
                        raise BuildBackendError(
                            f"Build timed out after {self.timeout_seconds}s"
                        ) from None

        if exit_code != 0:
            raise BuildBackendError(
                f"Build backend exited {exit_code}: {_log_tail(invocation.log_path)}",
                exit_code=exit_code,
            )


def _log_tail(path: Path) -> str:
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return "(no log)"
    return "\n".join(lines[-_LOG_TAIL_LINES:])


@dataclass(frozen=True)
class BuildResult:
    bundle: ArtifactBundle
    cache_warm: bool
    duration_seconds: float


class ExtensionBuilder:
    """Drives one build request from toolchain to stored bundle.

    Parameters
    ----------
    backend:
        The build backend (``MaturinBackend`` in production).
    provisioner:
        Selects a toolchain per target.
    store:
        The run's artifact store.
    work_dir:
        Root for per-request output directories.
    working_directory:
        Source directory the backend runs in.
    cache:
        Optional persistent compilation cache.
    """

    def __init__(
        self,
        backend: BuildBackend,
        provisioner: ToolchainProvisioner,
        store: RunArtifactStore,
        *,
        work_dir: Path,
        working_directory: Path,
        build_args: Sequence[str] = DEFAULT_BUILD_ARGS,
        cache: CompilationCache | None = None,
        wheel_glob: str = "*.whl",
    ) -> None:
        self.backend = backend
        self.provisioner = provisioner
        self.store = store
        self.work_dir = Path(work_dir)
        self.working_directory = Path(working_directory)
        self.build_args = tuple(build_args)
        self.cache = cache
        self.wheel_glob = wheel_glob

    def build(
        self, request: BuildRequest, cancel_event: threading.Event | None = None
    ) -> BuildResult:
        """Build *request* and upload its bundle.

        Raises ``ToolchainUnavailable``, ``BuildBackendError`` or
        ``RunCancelled``; cache problems are logged and ignored.
        """
        started = time.monotonic()
        name = request.bundle_name
        toolchain = self.provisioner.provision(request.target)

        env: dict[str, str] = {}
        cache_warm = False
        if self.cache is not None:
            try:
                lease = self.cache.lease(request.target)
                env.update(lease.env)
                cache_warm = lease.warm
            except CacheMiss as exc:
                logger.warning("%s: building without compilation cache (%s)", name, exc)

        job_dir = self.work_dir / name
        if job_dir.exists():
            shutil.rmtree(job_dir)
        out_dir = job_dir / "dist"
        out_dir.mkdir(parents=True)

        invocation = BuildInvocation(
            request=request,
            toolchain=toolchain,
            working_directory=self.working_directory,
            out_dir=out_dir,
            log_path=job_dir / "build.log",
            args=self.build_args,
            env=env,
        )
        self.backend.build(invocation, cancel_event)

        wheels = sorted(out_dir.glob(self.wheel_glob))
        if not wheels:
            raise BuildBackendError(f"{name}: backend succeeded but produced no wheels")
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled(f"Build for {name} cancelled before upload")

        bundle = self.store.put(name, wheels)
        duration = time.monotonic() - started
        logger.info(
            "%s built %d wheel(s) in %.1fs (cache %s)",
            name,
            len(wheels),
            duration,
            "warm" if cache_warm else "cold",
        )
        return BuildResult(bundle=bundle, cache_warm=cache_warm, duration_seconds=duration)
