"""Target Enumerator — expands the build matrix into build requests.

Pure expansion with no side effects. Matrices are declared in TOML::

    [[family]]
    name = "windows"
    targets = [
        { architecture = "x64", runner = "windows-latest" },
        { architecture = "x86", runner = "windows-latest" },
    ]

A target's ``platform_family`` defaults to its family name.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from wheelforge.core.errors import ConfigurationError, NameCollision
from wheelforge.models.targets import (
    BuildMatrix,
    BuildRequest,
    TargetDescriptor,
    TargetFamily,
)

logger = logging.getLogger(__name__)


def validate_matrix(matrix: BuildMatrix) -> None:
    """Raise if the matrix is empty, has empty families, or duplicates.

    Duplicates within a family are a ``ConfigurationError``; two families
    that derive the same bundle name raise ``NameCollision``.
    """
    if not matrix.families:
        raise ConfigurationError("Build matrix is empty.")

    seen_names: dict[str, str] = {}
    for family in matrix.families:
        if not family.targets:
            raise ConfigurationError(f"Family {family.name!r} has no targets.")

        keys: set[tuple[str, str]] = set()
        for target in family.targets:
            if target.key in keys:
                raise ConfigurationError(
                    f"Duplicate target {target.platform_family}/{target.architecture} "
                    f"in family {family.name!r}."
                )
            keys.add(target.key)

            owner = seen_names.get(target.bundle_name)
            if owner is not None:
                raise NameCollision(
                    f"Bundle name {target.bundle_name!r} is produced by both "
                    f"family {owner!r} and family {family.name!r}."
                )
            seen_names[target.bundle_name] = family.name


def enumerate_requests(matrix: BuildMatrix, source_revision: str) -> list[BuildRequest]:
    """Produce one independently schedulable BuildRequest per descriptor."""
    validate_matrix(matrix)
    if not source_revision:
        raise ConfigurationError("A source revision is required to enumerate builds.")

    requests = [
        BuildRequest(family=family.name, target=target, source_revision=source_revision)
        for family in matrix.families
        for target in family.targets
    ]
    logger.info(
        "Enumerated %d build request(s) across %d family(ies) at %s",
        len(requests),
        len(matrix.families),
        source_revision[:12],
    )
    return requests


def matrix_from_dict(data: dict[str, Any]) -> BuildMatrix:
    """Build a matrix from the parsed TOML structure."""
    families: list[TargetFamily] = []
    try:
        for raw_family in data.get("family", []):
            name = raw_family["name"]
            targets = [
                TargetDescriptor(
                    platform_family=raw.get("platform_family", name),
                    architecture=raw["architecture"],
                    runner_class=raw.get("runner", ""),
                )
                for raw in raw_family.get("targets", [])
            ]
            families.append(TargetFamily(name=name, targets=targets))
    except (KeyError, TypeError, ValidationError) as exc:
        raise ConfigurationError(f"Malformed build matrix: {exc}") from exc
    return BuildMatrix(families=families)


def load_matrix(path: Path) -> BuildMatrix:
    """Load and validate a TOML build matrix."""
    try:
        data = tomllib.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Build matrix not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Build matrix {path} is not valid TOML: {exc}") from exc
    matrix = matrix_from_dict(data)
    validate_matrix(matrix)
    return matrix
