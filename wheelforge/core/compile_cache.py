"""Persistent compilation cache, partitioned per target.

Each target gets its own sccache directory so concurrent builds for
different targets never write the same cache entry. The cache is
best-effort: any problem raises ``CacheMiss``, which the builder logs and
then builds without the cache.
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path

from wheelforge.core.errors import CacheMiss
from wheelforge.models.targets import TargetDescriptor

logger = logging.getLogger(__name__)

_MARKER = ".wheelforge-cache"


@dataclass(frozen=True)
class CacheLease:
    """Environment for one build's cache partition."""

    partition: Path
    warm: bool
    env: dict[str, str] = field(default_factory=dict)


class CompilationCache:
    """sccache-backed cache rooted at *root*, shared across runs.

    Parameters
    ----------
    root:
        Persistent cache directory.
    wrapper:
        Compiler wrapper executable; must be on PATH for the cache to apply.
    max_size:
        Passed through as ``SCCACHE_CACHE_SIZE``.
    """

    def __init__(self, root: Path, *, wrapper: str = "sccache", max_size: str = "2G") -> None:
        self.root = Path(root)
        self.wrapper = wrapper
        self.max_size = max_size

    def partition(self, target: TargetDescriptor) -> Path:
        return self.root / f"{target.platform_family}-{target.architecture}"

    def lease(self, target: TargetDescriptor) -> CacheLease:
        """Prepare the target's partition and return its build environment.

        Raises ``CacheMiss`` if the wrapper is missing or the partition
        cannot be used.
        """
        wrapper_path = shutil.which(self.wrapper)
        if wrapper_path is None:
            raise CacheMiss(f"{self.wrapper} not found on PATH")

        partition = self.partition(target)
        marker = partition / _MARKER
        expected = target.bundle_name
        try:
            warm = marker.exists()
            if warm and marker.read_text(encoding="utf-8").strip() != expected:
                self._quarantine(partition)
                warm = False
            if not warm:
                partition.mkdir(parents=True, exist_ok=True)
                marker.write_text(expected, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CacheMiss(f"cache partition {partition} unusable: {exc}") from exc

        return CacheLease(
            partition=partition,
            warm=warm,
            env={
                "RUSTC_WRAPPER": wrapper_path,
                "SCCACHE_DIR": str(partition),
                "SCCACHE_CACHE_SIZE": self.max_size,
            },
        )

    def _quarantine(self, partition: Path) -> None:
        moved = partition.with_name(f"{partition.name}.corrupt-{int(time.time())}")
        logger.warning("Cache partition %s is corrupt; moving it to %s", partition, moved)
        partition.rename(moved)
