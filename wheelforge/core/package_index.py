"""Package index backends.

Backends satisfy the ``PackageIndex`` Protocol:

- ``LocalIndex``: a directory laid out as ``{root}/{project}/{filename}``,
  used for local mirrors and tests.
- ``MaturinUploadIndex``: shells out to ``maturin upload`` with
  ``--non-interactive --skip-existing``.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import SecretStr

from wheelforge.core.errors import PermissionDenied, PublishConflict, PublishError
from wheelforge.models.artifacts import ArtifactIdentity

logger = logging.getLogger(__name__)

UPLOAD_FLAGS: tuple[str, ...] = ("--non-interactive", "--skip-existing")

_CONFLICT_MARKERS = ("already exist", "File already exists")
_AUTH_MARKERS = ("403", "Forbidden", "Invalid or non-existent authentication", "401")


@runtime_checkable
class PackageIndex(Protocol):
    """Protocol for package index backends."""

    def has(self, identity: ArtifactIdentity) -> bool:
        """Return ``True`` if the index already holds *identity*."""
        ...

    def upload(self, path: Path, identity: ArtifactIdentity) -> None:
        """Upload *path*.

        Raises ``PublishConflict`` if the identity already exists,
        ``PermissionDenied`` on rejected credentials, ``PublishError``
        otherwise.
        """
        ...


class LocalIndex:
    """Directory-backed index. Uploads are atomic and never overwrite."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, identity: ArtifactIdentity) -> Path:
        return self.root / identity.project / identity.filename

    def has(self, identity: ArtifactIdentity) -> bool:
        return self._path(identity).exists()

    def upload(self, path: Path, identity: ArtifactIdentity) -> None:
        target = self._path(identity)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, suffix=".part")
        os.close(fd)
        try:
            shutil.copyfile(path, tmp)
            try:
                # link fails if the target exists, which makes the check atomic
                os.link(tmp, target)
            except FileExistsError:
                raise PublishConflict(f"{identity} already exists at {self.root}") from None
        finally:
            os.unlink(tmp)
        logger.debug("Stored %s in local index %s", identity.filename, self.root)

    def list_files(self) -> list[str]:
        return sorted(p.name for p in self.root.glob("*/*") if p.suffix != ".part")


class MaturinUploadIndex:
    """Uploads through ``maturin upload``.

    maturin cannot be queried for existing files, so ``has`` always
    returns ``False`` and conflicts are detected from upload output.

    Parameters
    ----------
    token:
        Index API token, passed as ``MATURIN_PYPI_TOKEN``.
    repository_url:
        Upload endpoint; maturin's default (PyPI) when empty.
    """

    def __init__(
        self,
        token: SecretStr,
        *,
        repository_url: str = "",
        executable: str = "maturin",
        timeout_seconds: int = 600,
    ) -> None:
        self._token = token
        self.repository_url = repository_url
        self.executable = executable
        self.timeout_seconds = timeout_seconds

    def command(self, paths: list[Path]) -> list[str]:
        cmd = [self.executable, "upload", *UPLOAD_FLAGS]
        if self.repository_url:
            cmd += ["--repository-url", self.repository_url]
        return cmd + [str(p) for p in paths]

    def has(self, identity: ArtifactIdentity) -> bool:
        return False

    def upload(self, path: Path, identity: ArtifactIdentity) -> None:
        env = {**os.environ, "MATURIN_PYPI_TOKEN": self._token.get_secret_value()}
        try:
            proc = subprocess.run(
                self.command([path]),
                capture_output=True,
                text=True,
                env=env,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise PublishError(f"Upload of {identity.filename} failed: {exc}") from exc

        output = f"{proc.stdout}\n{proc.stderr}"
        if proc.returncode != 0:
            if any(marker in output for marker in _AUTH_MARKERS):
                raise PermissionDenied(f"Index rejected credentials for {identity.filename}")
            raise PublishError(
                f"maturin upload exited {proc.returncode} for {identity.filename}: "
                f"{proc.stderr.strip()[-500:]}"
            )
        if any(marker in output for marker in _CONFLICT_MARKERS):
            raise PublishConflict(f"{identity} already exists on the index")
