"""Fan-out build group joined by a full-success barrier.

The barrier is a counted join: it resolves successfully only once every
issued request has reported success. The first failure short-circuits
the join: queued builds are cancelled, in-flight builds are signalled
through the shared cancel event, and the join returns failed without
waiting for stragglers.

Stragglers are never joined; the caller seals the artifact store once the
join returns, so a build that finishes late cannot add a bundle.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from wheelforge.core.builder import BuildResult
from wheelforge.core.errors import RunCancelled
from wheelforge.models.states import TargetResult, TargetStatus
from wheelforge.models.targets import BuildRequest

logger = logging.getLogger(__name__)

BuildFn = Callable[[BuildRequest, threading.Event], BuildResult]


@dataclass
class JoinResult:
    """Outcome of the barrier: per-target results in request order."""

    succeeded: bool
    targets: list[TargetResult] = field(default_factory=list)
    builds: dict[str, BuildResult] = field(default_factory=dict)

    @property
    def failures(self) -> list[TargetResult]:
        return [t for t in self.targets if t.status is TargetStatus.FAILED]


class BuildBarrier:
    """Runs build requests in parallel and joins them behind a barrier.

    Parameters
    ----------
    max_workers:
        Upper bound on concurrent builds.
    cancel_event:
        Shared cancellation signal; set on first failure or externally.
    on_result:
        Called on the joining thread with each terminal ``TargetResult``.
    """

    def __init__(
        self,
        *,
        max_workers: int,
        cancel_event: threading.Event,
        on_result: Callable[[TargetResult], None] | None = None,
    ) -> None:
        self.max_workers = max_workers
        self.cancel_event = cancel_event
        self._on_result = on_result

    def _guarded(self, build: BuildFn, request: BuildRequest) -> tuple[BuildResult, float]:
        if self.cancel_event.is_set():
            raise RunCancelled(f"Build for {request.bundle_name} cancelled before start")
        started = time.monotonic()
        result = build(request, self.cancel_event)
        return result, time.monotonic() - started

    def _report(self, result: TargetResult, results: dict[str, TargetResult]) -> None:
        results[result.bundle_name] = result
        if self._on_result is not None:
            self._on_result(result)

    def join(self, requests: list[BuildRequest], build: BuildFn) -> JoinResult:
        """Run every request and block until all succeed or one fails."""
        remaining = len(requests)
        results: dict[str, TargetResult] = {}
        builds: dict[str, BuildResult] = {}
        failed = False

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self.max_workers, len(requests))),
            thread_name_prefix="wheelforge-build",
        )
        try:
            futures: dict[Future, BuildRequest] = {
                executor.submit(self._guarded, build, req): req for req in requests
            }
            for future in as_completed(futures):
                request = futures[future]
                name = request.bundle_name
                try:
                    build_result, elapsed = future.result()
                except RunCancelled as exc:
                    self._report(
                        TargetResult(
                            bundle_name=name,
                            status=TargetStatus.CANCELLED,
                            error_type=type(exc).__name__,
                            reason=str(exc),
                        ),
                        results,
                    )
                    failed = True
                except Exception as exc:
                    logger.error("%s failed: %s: %s", name, type(exc).__name__, exc)
                    self._report(
                        TargetResult(
                            bundle_name=name,
                            status=TargetStatus.FAILED,
                            error_type=type(exc).__name__,
                            reason=str(exc),
                        ),
                        results,
                    )
                    failed = True
                else:
                    builds[name] = build_result
                    remaining -= 1
                    self._report(
                        TargetResult(
                            bundle_name=name,
                            status=TargetStatus.SUCCEEDED,
                            cache_warm=build_result.cache_warm,
                            duration_seconds=round(elapsed, 3),
                        ),
                        results,
                    )

                if failed:
                    self.cancel_event.set()
                    for other in futures:
                        other.cancel()
                    break
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        # Stragglers never reported; the short-circuit cancelled them.
        for request in requests:
            if request.bundle_name not in results:
                self._report(
                    TargetResult(
                        bundle_name=request.bundle_name,
                        status=TargetStatus.CANCELLED,
                        reason="join short-circuited by an earlier failure",
                    ),
                    results,
                )

        ordered = [results[r.bundle_name] for r in requests]
        succeeded = not failed and remaining == 0
        logger.info(
            "Build join %s: %d/%d succeeded",
            "resolved" if succeeded else "failed",
            len(builds),
            len(requests),
        )
        return JoinResult(succeeded=succeeded, targets=ordered, builds=builds)
