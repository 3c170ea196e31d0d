"""Artifact bundle models (immutable once uploaded)."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

# {distribution}-{version}(-{build tag})?-{python tag}-{abi tag}-{platform tag}.whl
_WHEEL_RE = re.compile(
    r"^(?P<project>[^-]+)-(?P<version>[^-]+)(-(?P<build>\d[^-]*))?"
    r"-(?P<python>[^-]+)-(?P<abi>[^-]+)-(?P<platform>[^-]+)\.whl$"
)


class BundleFile(BaseModel):
    """One file inside a bundle; the bytes live in the artifact store."""

    model_config = ConfigDict(frozen=True)

    filename: str
    sha256: str
    size_bytes: int


class ArtifactBundle(BaseModel):
    """The packaged output of one successful build.

    The name is derived from the target (``wheels-<family>-<arch>``) and
    is unique within a run.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    files: list[BundleFile]
    uploaded_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def filenames(self) -> list[str]:
        return [f.filename for f in self.files]


class ArtifactIdentity(BaseModel):
    """The identity an index uses to decide whether a file already exists."""

    model_config = ConfigDict(frozen=True)

    project: str
    version: str
    filename: str

    @classmethod
    def from_filename(cls, filename: str) -> ArtifactIdentity:
        """Parse a wheel filename into its index identity.

        Non-wheel files fall back to the filename stem with an empty version.
        """
        match = _WHEEL_RE.match(filename)
        if match is None:
            return cls(project=filename.rsplit(".", 1)[0], version="", filename=filename)
        project = re.sub(r"[-_.]+", "-", match.group("project")).lower()
        return cls(project=project, version=match.group("version"), filename=filename)

    def __str__(self) -> str:
        return f"{self.project}=={self.version} ({self.filename})"
