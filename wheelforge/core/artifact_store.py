"""Run-scoped artifact store — named, immutable bundles over content-addressed blobs.

Storage layout::

    {base_path}/{run_id}/blobs/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
    {base_path}/{run_id}/bundles/{bundle_name}.json

Blobs are written first; the bundle manifest is written last with an
atomic rename, so a bundle is either fully visible or not visible at all.
No delete method — bundles are immutable once stored and live for the
duration of the run.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Iterable
from pathlib import Path

from wheelforge.core.errors import NameCollision, RunCancelled, WheelforgeError
from wheelforge.core.hasher import sha256_hex
from wheelforge.models.artifacts import ArtifactBundle, BundleFile

logger = logging.getLogger(__name__)


class ArtifactIntegrityError(WheelforgeError):
    """Raised when a stored blob's hash does not match its address."""


class RunArtifactStore:
    """Named bundle store scoped to a single pipeline run.

    Parameters
    ----------
    base_path:
        Root directory shared by all runs; each run gets its own subtree.
    run_id:
        The run this store belongs to.
    """

    def __init__(self, base_path: Path, run_id: str) -> None:
        self.run_id = run_id
        self._root = Path(base_path) / run_id
        self._blobs = self._root / "blobs"
        self._bundles = self._root / "bundles"
        self._blobs.mkdir(parents=True, exist_ok=True)
        self._bundles.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._sealed = False

    @property
    def root(self) -> Path:
        return self._root

    def _blob_path(self, sha256_digest: str) -> Path:
        return self._blobs / sha256_digest[:2] / sha256_digest[2:4] / f"{sha256_digest}.dat"

    def _manifest_path(self, name: str) -> Path:
        return self._bundles / f"{name}.json"

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def _store_blob(self, data: bytes) -> str:
        digest = sha256_hex(data)
        path = self._blob_path(digest)
        if path.exists():
            if not self.verify_blob(digest):
                raise ArtifactIntegrityError(
                    f"Existing blob {digest} failed integrity check"
                )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        return digest

    def put(self, name: str, files: Iterable[Path]) -> ArtifactBundle:
        """Store *files* as one bundle under *name*.

        Raises ``NameCollision`` if *name* was already used in this run and
        ``RunCancelled`` once the store has been sealed.
        """
        if self.exists(name):
            raise NameCollision(f"Bundle {name!r} already uploaded in run {self.run_id}")

        entries: list[BundleFile] = []
        for path in sorted(Path(p) for p in files):
            data = path.read_bytes()
            entries.append(
                BundleFile(
                    filename=path.name,
                    sha256=self._store_blob(data),
                    size_bytes=len(data),
                )
            )
        bundle = ArtifactBundle(name=name, files=entries)

        with self._lock:
            if self._sealed:
                raise RunCancelled(
                    f"Run {self.run_id} no longer accepts bundles; {name!r} discarded"
                )
            target = self._manifest_path(name)
            if target.exists():
                raise NameCollision(
                    f"Bundle {name!r} already uploaded in run {self.run_id}"
                )
            fd, tmp = tempfile.mkstemp(dir=self._bundles, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(bundle.model_dump_json())
                os.replace(tmp, target)
            finally:
                if os.path.exists(tmp):
                    os.unlink(tmp)

        logger.info(
            "Uploaded bundle %s (%d file(s)) to run %s", name, len(entries), self.run_id
        )
        return bundle

    def seal(self) -> None:
        """Refuse further uploads.

        Called once the build join has returned, so a straggler finishing
        after a short-circuit cannot add a bundle to the run.
        """
        with self._lock:
            self._sealed = True

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        return self._manifest_path(name).exists()

    def get(self, name: str) -> ArtifactBundle:
        path = self._manifest_path(name)
        if not path.exists():
            raise FileNotFoundError(f"Bundle not found: {name}")
        return ArtifactBundle.model_validate_json(path.read_text(encoding="utf-8"))

    def get_all(self, pattern: str) -> list[ArtifactBundle]:
        """Return every bundle whose name matches the wildcard *pattern*.

        Returns an empty list, not an error, when nothing matches.
        """
        names = sorted(
            p.stem for p in self._bundles.glob("*.json") if fnmatch.fnmatchcase(p.stem, pattern)
        )
        return [self.get(name) for name in names]

    def read_file(self, bundle_file: BundleFile) -> bytes:
        """Return the bytes of a bundle file, verifying its digest."""
        path = self._blob_path(bundle_file.sha256)
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {bundle_file.sha256}")
        data = path.read_bytes()
        if sha256_hex(data) != bundle_file.sha256:
            raise ArtifactIntegrityError(
                f"{bundle_file.filename}: stored bytes do not match {bundle_file.sha256}"
            )
        return data

    def materialize(self, pattern: str, dest: Path) -> list[Path]:
        """Download matching bundles into ``dest/<bundle_name>/<filename>``."""
        written: list[Path] = []
        for bundle in self.get_all(pattern):
            bundle_dir = Path(dest) / bundle.name
            if bundle_dir.exists():
                shutil.rmtree(bundle_dir)
            bundle_dir.mkdir(parents=True)
            for entry in bundle.files:
                out = bundle_dir / entry.filename
                out.write_bytes(self.read_file(entry))
                written.append(out)
        return written

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_blob(self, sha256_digest: str) -> bool:
        """Re-hash stored data and compare against its address."""
        path = self._blob_path(sha256_digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == sha256_digest

    def verify_bundle(self, bundle: ArtifactBundle) -> bool:
        return all(self.verify_blob(entry.sha256) for entry in bundle.files)
