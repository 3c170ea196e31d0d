"""Trigger context — how the pipeline was started.

Supplied once at pipeline start and threaded read-only through every
stage; no component re-queries the environment for it.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator

TAG_REF_PREFIX = "refs/tags/"


class TriggerKind(str, Enum):
    TAG_PUSH = "tag_push"
    PULL_REQUEST = "pull_request"
    MANUAL_DISPATCH = "manual_dispatch"


_GITHUB_EVENTS: dict[str, TriggerKind] = {
    "push": TriggerKind.TAG_PUSH,
    "pull_request": TriggerKind.PULL_REQUEST,
    "workflow_dispatch": TriggerKind.MANUAL_DISPATCH,
}


class TriggerContext(BaseModel):
    """The tagged trigger variant for one run.

    ``changed_paths`` is only meaningful for pull requests; ``None`` means
    the changed file list is unknown and the run is assumed relevant.
    """

    model_config = ConfigDict(frozen=True)

    kind: TriggerKind
    ref_name: str = ""
    publish_requested: bool = False
    changed_paths: tuple[str, ...] | None = None
    base_ref: str = ""

    @model_validator(mode="after")
    def _tag_push_needs_tag_ref(self) -> TriggerContext:
        if self.kind is TriggerKind.TAG_PUSH and not self.is_tag_ref:
            raise ValueError(
                f"Tag push trigger requires a tag ref, got {self.ref_name!r}"
            )
        return self

    @property
    def is_tag_ref(self) -> bool:
        return self.ref_name.startswith(TAG_REF_PREFIX)

    @property
    def tag(self) -> str:
        return self.ref_name.removeprefix(TAG_REF_PREFIX) if self.is_tag_ref else ""

    def touches(self, path: str) -> bool:
        """Whether a pull request modifies *path*."""
        if self.changed_paths is None:
            return True
        return path in self.changed_paths

    @classmethod
    def from_github_env(cls, environ: Mapping[str, str]) -> TriggerContext:
        """Build a trigger from the GitHub Actions environment variables."""
        event = environ.get("GITHUB_EVENT_NAME", "")
        kind = _GITHUB_EVENTS.get(event)
        if kind is None:
            raise ValueError(f"Unsupported trigger event: {event!r}")
        ref = environ.get("GITHUB_REF", "")
        return cls(
            kind=kind,
            ref_name=ref,
            base_ref=environ.get("GITHUB_BASE_REF", ""),
            # Dispatching on a tag ref is the explicit publish request.
            publish_requested=kind is TriggerKind.MANUAL_DISPATCH
            and ref.startswith(TAG_REF_PREFIX),
        )
