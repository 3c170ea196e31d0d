"""Build matrix models — target descriptors, families, and build requests."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

BUNDLE_PREFIX = "wheels"

# Both parts end up in file and directory names.
TARGET_PART_PATTERN = r"^[A-Za-z0-9_.]+$"


def bundle_name_for(platform_family: str, architecture: str) -> str:
    """Derive the artifact bundle name for a target.

    The format ``wheels-<platform_family>-<architecture>`` is consumed
    verbatim by the publish glob ``wheels-*/*`` and must not change.
    """
    return f"{BUNDLE_PREFIX}-{platform_family}-{architecture}"


class TargetDescriptor(BaseModel):
    """A single (platform family, architecture) build configuration."""

    model_config = ConfigDict(frozen=True)

    platform_family: str = Field(pattern=TARGET_PART_PATTERN)
    architecture: str = Field(pattern=TARGET_PART_PATTERN)
    runner_class: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.platform_family, self.architecture)

    @property
    def bundle_name(self) -> str:
        return bundle_name_for(self.platform_family, self.architecture)


class TargetFamily(BaseModel):
    """A group of targets built on the same host platform."""

    model_config = ConfigDict(frozen=True)

    name: str
    targets: list[TargetDescriptor] = []


class BuildMatrix(BaseModel):
    """The declarative build matrix, one family per host platform."""

    model_config = ConfigDict(frozen=True)

    families: list[TargetFamily] = []

    @property
    def descriptors(self) -> list[TargetDescriptor]:
        return [t for family in self.families for t in family.targets]


class BuildRequest(BaseModel):
    """A target bound to a fixed source revision.

    Consumed exactly once by one Extension Builder.
    """

    model_config = ConfigDict(frozen=True)

    family: str
    target: TargetDescriptor
    source_revision: str

    @property
    def bundle_name(self) -> str:
        return self.target.bundle_name


# The matrix shipped with the release workflow.
DEFAULT_MATRIX = BuildMatrix(
    families=[
        TargetFamily(
            name="windows",
            targets=[
                TargetDescriptor(
                    platform_family="windows", architecture="x64",
                    runner_class="windows-latest",
                ),
                TargetDescriptor(
                    platform_family="windows", architecture="x86",
                    runner_class="windows-latest",
                ),
            ],
        ),
        TargetFamily(
            name="macos",
            targets=[
                TargetDescriptor(
                    platform_family="macos", architecture="x86_64",
                    runner_class="macos-13",
                ),
                TargetDescriptor(
                    platform_family="macos", architecture="aarch64",
                    runner_class="macos-14",
                ),
            ],
        ),
    ]
)
