"""Toolchain provisioning — select a Rust target and build tools per architecture.

Provisioners satisfy the ``ToolchainProvisioner`` Protocol, so tests and
alternative hosts can swap in their own without touching the builder.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from wheelforge.core.errors import ToolchainUnavailable
from wheelforge.models.targets import TargetDescriptor

logger = logging.getLogger(__name__)

TARGET_TRIPLES: dict[tuple[str, str], str] = {
    ("windows", "x64"): "x86_64-pc-windows-msvc",
    ("windows", "x86"): "i686-pc-windows-msvc",
    ("windows", "aarch64"): "aarch64-pc-windows-msvc",
    ("macos", "x86_64"): "x86_64-apple-darwin",
    ("macos", "aarch64"): "aarch64-apple-darwin",
    ("linux", "x86_64"): "x86_64-unknown-linux-gnu",
    ("linux", "x86"): "i686-unknown-linux-gnu",
    ("linux", "aarch64"): "aarch64-unknown-linux-gnu",
    ("linux", "armv7"): "armv7-unknown-linux-gnueabihf",
}


class Toolchain(BaseModel):
    """A provisioned toolchain for one target."""

    model_config = ConfigDict(frozen=True)

    target_triple: str
    backend_executable: str
    env: dict[str, str] = {}


@runtime_checkable
class ToolchainProvisioner(Protocol):
    """Protocol for toolchain provisioning backends."""

    def provision(self, target: TargetDescriptor) -> Toolchain:
        """Return a toolchain for *target* or raise ``ToolchainUnavailable``."""
        ...


def target_triple(target: TargetDescriptor) -> str:
    try:
        return TARGET_TRIPLES[target.key]
    except KeyError:
        raise ToolchainUnavailable(
            f"No known Rust target for {target.platform_family}/{target.architecture}"
        ) from None


class LocalToolchainProvisioner:
    """Provision from the tools installed on this host.

    Checks the build backend and cargo are on PATH and, when rustup is
    available, installs the target's standard library.

    Parameters
    ----------
    backend:
        Build backend executable name (``maturin`` by default).
    """

    def __init__(self, backend: str = "maturin", *, timeout_seconds: int = 600) -> None:
        self.backend = backend
        self.timeout_seconds = timeout_seconds

    def provision(self, target: TargetDescriptor) -> Toolchain:
        triple = target_triple(target)

        backend_path = shutil.which(self.backend)
        if backend_path is None:
            raise ToolchainUnavailable(f"{self.backend} not found on PATH")
        if shutil.which("cargo") is None:
            raise ToolchainUnavailable("cargo not found on PATH")

        rustup = shutil.which("rustup")
        if rustup is not None:
            self._add_target(rustup, triple)
        else:
            logger.debug("rustup not found; assuming %s is installed", triple)

        return Toolchain(target_triple=triple, backend_executable=backend_path)

    def _add_target(self, rustup: str, triple: str) -> None:
        try:
            proc = subprocess.run(
                [rustup, "target", "add", triple],
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ToolchainUnavailable(f"rustup target add {triple} failed: {exc}") from exc
        if proc.returncode != 0:
            raise ToolchainUnavailable(
                f"rustup target add {triple} exited {proc.returncode}: {proc.stderr.strip()}"
            )
