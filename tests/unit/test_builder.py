"""Tests for the Extension Builder, toolchain selection and the compilation cache."""

from __future__ import annotations

import shutil
import sys
import threading
from pathlib import Path

import pytest

from wheelforge.core.artifact_store import RunArtifactStore
from wheelforge.core.builder import BuildInvocation, ExtensionBuilder, MaturinBackend
from wheelforge.core.compile_cache import CompilationCache
from wheelforge.core.errors import (
    BuildBackendError,
    CacheMiss,
    RunCancelled,
    ToolchainUnavailable,
)
from wheelforge.core.toolchain import (
    LocalToolchainProvisioner,
    Toolchain,
    target_triple,
)
from wheelforge.models.config import DEFAULT_BUILD_ARGS
from wheelforge.models.targets import DEFAULT_MATRIX, BuildRequest, TargetDescriptor

WIN_X64 = TargetDescriptor(platform_family="windows", architecture="x64")
MAC_ARM = TargetDescriptor(platform_family="macos", architecture="aarch64")


def _request(target: TargetDescriptor = WIN_X64) -> BuildRequest:
    return BuildRequest(family=target.platform_family, target=target, source_revision="abc123")


@pytest.fixture
def builder_factory(store: RunArtifactStore, tmp_dir: Path, make_provisioner):
    def _factory(backend, **kwargs) -> ExtensionBuilder:
        kwargs.setdefault("provisioner", make_provisioner())
        provisioner = kwargs.pop("provisioner")
        return ExtensionBuilder(
            backend,
            provisioner,
            store,
            work_dir=tmp_dir / "work",
            working_directory=tmp_dir,
            **kwargs,
        )

    return _factory


# ---------------------------------------------------------------------------
# Toolchain
# ---------------------------------------------------------------------------


class TestToolchain:
    def test_triples_for_release_matrix(self):
        triples = {t.bundle_name: target_triple(t) for t in DEFAULT_MATRIX.descriptors}
        assert triples == {
            "wheels-windows-x64": "x86_64-pc-windows-msvc",
            "wheels-windows-x86": "i686-pc-windows-msvc",
            "wheels-macos-x86_64": "x86_64-apple-darwin",
            "wheels-macos-aarch64": "aarch64-apple-darwin",
        }

    def test_unknown_target(self):
        with pytest.raises(ToolchainUnavailable, match="No known Rust target"):
            target_triple(TargetDescriptor(platform_family="plan9", architecture="mips"))

    def test_missing_backend(self, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: None)
        with pytest.raises(ToolchainUnavailable, match="not found on PATH"):
            LocalToolchainProvisioner("maturin").provision(WIN_X64)

    def test_without_rustup(self, monkeypatch):
        paths = {"maturin": "/usr/bin/maturin", "cargo": "/usr/bin/cargo"}
        monkeypatch.setattr(shutil, "which", lambda name: paths.get(name))
        toolchain = LocalToolchainProvisioner("maturin").provision(MAC_ARM)
        assert toolchain.target_triple == "aarch64-apple-darwin"
        assert toolchain.backend_executable == "/usr/bin/maturin"


# ---------------------------------------------------------------------------
# Compilation cache
# ---------------------------------------------------------------------------


class TestCompilationCache:
    @pytest.fixture
    def with_sccache(self, monkeypatch):
        monkeypatch.setattr(
            shutil, "which", lambda name: "/usr/bin/sccache" if name == "sccache" else None
        )

    def test_missing_wrapper_is_cache_miss(self, tmp_dir: Path, monkeypatch):
        monkeypatch.setattr(shutil, "which", lambda name: None)
        with pytest.raises(CacheMiss):
            CompilationCache(tmp_dir / "cache").lease(WIN_X64)

    def test_cold_then_warm(self, tmp_dir: Path, with_sccache):
        cache = CompilationCache(tmp_dir / "cache")
        first = cache.lease(WIN_X64)
        second = cache.lease(WIN_X64)
        assert first.warm is False
        assert second.warm is True
        assert second.env["RUSTC_WRAPPER"] == "/usr/bin/sccache"
        assert second.env["SCCACHE_DIR"] == str(tmp_dir / "cache" / "windows-x64")

    def test_partitions_are_per_target(self, tmp_dir: Path, with_sccache):
        cache = CompilationCache(tmp_dir / "cache")
        assert cache.lease(WIN_X64).partition != cache.lease(MAC_ARM).partition

    def test_corrupt_partition_quarantined(self, tmp_dir: Path, with_sccache):
        cache = CompilationCache(tmp_dir / "cache")
        partition = cache.lease(WIN_X64).partition
        (partition / ".wheelforge-cache").write_text("garbage", encoding="utf-8")
        lease = cache.lease(WIN_X64)
        assert lease.warm is False
        assert list((tmp_dir / "cache").glob("windows-x64.corrupt-*"))


# ---------------------------------------------------------------------------
# Maturin backend command line
# ---------------------------------------------------------------------------


class TestMaturinBackend:
    def _invocation(self, tmp_dir: Path) -> BuildInvocation:
        return BuildInvocation(
            request=_request(),
            toolchain=Toolchain(target_triple="x86_64-pc-windows-msvc", backend_executable="maturin"),
            working_directory=tmp_dir,
            out_dir=tmp_dir / "dist",
            log_path=tmp_dir / "build.log",
            args=DEFAULT_BUILD_ARGS,
        )

    def test_command(self, tmp_dir: Path):
        cmd = MaturinBackend.command(self._invocation(tmp_dir))
        assert cmd[:2] == ["maturin", "build"]
        assert "--release" in cmd
        assert cmd[cmd.index("--bindings") + 1] == "pyo3"
        assert "--features=pyo3/extension-module" in cmd
        assert cmd[cmd.index("--out") + 1] == str(tmp_dir / "dist")
        assert cmd[-2:] == ["--target", "x86_64-pc-windows-msvc"]

    def test_nonzero_exit_includes_log_tail(self, tmp_dir: Path):
        # "<python> build ..." runs this script in place of maturin.
        (tmp_dir / "build").write_text(
            "import sys\nprint('error: linker failed')\nsys.exit(3)\n", encoding="utf-8"
        )
        invocation = BuildInvocation(
            request=_request(),
            toolchain=Toolchain(target_triple="x", backend_executable=sys.executable),
            working_directory=tmp_dir,
            out_dir=tmp_dir / "dist",
            log_path=tmp_dir / "build.log",
            args=(),
        )
        with pytest.raises(BuildBackendError, match="linker failed") as excinfo:
            MaturinBackend(timeout_seconds=60).build(invocation)
        assert excinfo.value.exit_code == 3

    def test_missing_executable(self, tmp_dir: Path):
        invocation = BuildInvocation(
            request=_request(),
            toolchain=Toolchain(target_triple="x", backend_executable=str(tmp_dir / "nope")),
            working_directory=tmp_dir,
            out_dir=tmp_dir / "dist",
            log_path=tmp_dir / "build.log",
            args=(),
        )
        with pytest.raises(BuildBackendError, match="Failed to start"):
            MaturinBackend().build(invocation)


# ---------------------------------------------------------------------------
# Extension builder
# ---------------------------------------------------------------------------


class TestExtensionBuilder:
    def test_build_uploads_bundle(self, builder_factory, make_backend, store):
        result = builder_factory(make_backend()).build(_request())
        assert result.bundle.name == "wheels-windows-x64"
        assert result.bundle.filenames == ["tonbo-1.2.0-cp310-abi3-win_amd64.whl"]
        assert store.exists("wheels-windows-x64")

    def test_args_passed_through(self, builder_factory, make_backend):
        backend = make_backend()
        builder_factory(backend).build(_request())
        assert backend.invocations[0].args == DEFAULT_BUILD_ARGS

    def test_backend_failure_uploads_nothing(self, builder_factory, make_backend, store):
        backend = make_backend(fail={"wheels-windows-x64"})
        with pytest.raises(BuildBackendError):
            builder_factory(backend).build(_request())
        assert not store.exists("wheels-windows-x64")

    def test_no_wheels_is_failure(self, builder_factory, make_backend, store):
        backend = make_backend(produce_nothing={"wheels-windows-x64"})
        with pytest.raises(BuildBackendError, match="no wheels"):
            builder_factory(backend).build(_request())
        assert not store.exists("wheels-windows-x64")

    def test_toolchain_unavailable(self, builder_factory, make_backend, make_provisioner):
        builder = builder_factory(
            make_backend(), provisioner=make_provisioner(unavailable={"wheels-windows-x64"})
        )
        with pytest.raises(ToolchainUnavailable):
            builder.build(_request())

    def test_cancelled_before_upload(self, builder_factory, make_backend, store):
        event = threading.Event()
        event.set()
        with pytest.raises(RunCancelled):
            builder_factory(make_backend()).build(_request(), event)
        assert not store.exists("wheels-windows-x64")

    def test_cache_miss_degrades_to_uncached(
        self, builder_factory, make_backend, tmp_dir, monkeypatch
    ):
        monkeypatch.setattr(shutil, "which", lambda name: None)
        backend = make_backend()
        result = builder_factory(backend, cache=CompilationCache(tmp_dir / "cache")).build(
            _request()
        )
        assert result.cache_warm is False
        assert "RUSTC_WRAPPER" not in backend.invocations[0].env

    def test_cache_env_reaches_backend(self, builder_factory, make_backend, tmp_dir, monkeypatch):
        monkeypatch.setattr(
            shutil, "which", lambda name: "/usr/bin/sccache" if name == "sccache" else None
        )
        backend = make_backend()
        builder_factory(backend, cache=CompilationCache(tmp_dir / "cache")).build(_request())
        assert backend.invocations[0].env["SCCACHE_DIR"].endswith("windows-x64")

    def test_private_output_directories(self, builder_factory, make_backend):
        backend = make_backend()
        builder = builder_factory(backend)
        builder.build(_request(WIN_X64))
        builder.build(_request(MAC_ARM))
        out_dirs = {inv.out_dir for inv in backend.invocations}
        assert len(out_dirs) == 2
