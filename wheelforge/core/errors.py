"""Error taxonomy for the release pipeline.

Only ``PublishConflict`` and ``CacheMiss`` are recoverable; everything
else dooms the run it occurs in.
"""

from __future__ import annotations


class WheelforgeError(RuntimeError):
    """Base class for all pipeline errors."""


class ConfigurationError(WheelforgeError, ValueError):
    """The build matrix or pipeline definition is invalid. The run never starts."""


class NameCollision(WheelforgeError):
    """Two bundles in one run resolved to the same name."""


class ToolchainUnavailable(WheelforgeError):
    """No toolchain could be provisioned for a target."""


class BuildBackendError(WheelforgeError):
    """The build backend failed (compiler, linker, or packaging)."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class CacheMiss(WheelforgeError):
    """The compilation cache could not be used; the build proceeds uncached."""


class AttestationIncomplete(WheelforgeError):
    """The bundle set does not match the issued build requests."""


class PublishConflict(WheelforgeError):
    """The index already holds an artifact with the same identity."""


class PublishError(WheelforgeError):
    """An upload failed for a reason other than a conflict."""


class PermissionDenied(WheelforgeError):
    """A capability grant required by a stage is missing or was rejected."""


class RunCancelled(WheelforgeError):
    """The run was cancelled externally."""
