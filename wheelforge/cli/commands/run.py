"""``wheelforge run`` — execute the release pipeline once.

The trigger comes either from flags or, with ``--from-github-env``, from
the GitHub Actions environment. Secrets are read from ``WHEELFORGE_*``
settings and become the run's capability grants here, at the boundary;
nothing downstream reads the environment.

Exit code is 0 for Published and SkippedByPolicy runs with no failed
artifacts, 1 otherwise.
"""

from __future__ import annotations

import os
from pathlib import Path

import typer
from rich.console import Console

from wheelforge.cli.commands.matrix import resolve_matrix
from wheelforge.config import ReleaseSettings
from wheelforge.core.builder import MaturinBackend
from wheelforge.core.errors import WheelforgeError
from wheelforge.core.orchestrator import ReleaseOrchestrator
from wheelforge.core.package_index import LocalIndex, MaturinUploadIndex, PackageIndex
from wheelforge.core.toolchain import LocalToolchainProvisioner
from wheelforge.models.config import RunContext
from wheelforge.models.trigger import TriggerContext, TriggerKind
from wheelforge.monitor.renderer import ReportRenderer

console = Console()


def _select_index(settings: ReleaseSettings, local_index: Path | None) -> PackageIndex | None:
    path = local_index or settings.local_index_path
    if path is not None:
        return LocalIndex(path)
    if settings.index_token is not None:
        return MaturinUploadIndex(
            settings.index_token,
            repository_url=settings.index_url,
            executable=settings.backend_executable,
        )
    return None


def _context_from_flags(
    settings: ReleaseSettings,
    trigger: TriggerKind,
    ref: str,
    revision: str,
    publish: bool,
    changed: list[str] | None,
    run_id: str | None,
) -> RunContext:
    fields: dict = {
        "source_revision": revision,
        "repository": settings.repository,
        "workflow_path": settings.workflow_path,
        "trigger": TriggerContext(
            kind=trigger,
            ref_name=ref,
            publish_requested=publish,
            changed_paths=tuple(changed) if changed else None,
        ),
        "grants": settings.grants(),
    }
    if run_id:
        fields["run_id"] = run_id
    return RunContext(**fields)


def run_cmd(
    trigger: TriggerKind = typer.Option(
        TriggerKind.MANUAL_DISPATCH,
        "--trigger",
        "-t",
        help="What started this run.",
    ),
    ref: str = typer.Option(
        "",
        "--ref",
        help="Git ref the run was triggered for, e.g. refs/tags/v1.2.0.",
    ),
    revision: str = typer.Option(
        "",
        "--revision",
        help="Commit the artifacts are built from.",
    ),
    publish: bool = typer.Option(
        False,
        "--publish/--dry-run",
        help="For manual dispatch: request publishing (tag refs only).",
    ),
    changed: list[str] = typer.Option(
        None,
        "--changed",
        help="Changed paths of a pull request (repeatable).",
    ),
    from_github_env: bool = typer.Option(
        False,
        "--from-github-env",
        help="Read trigger and revision from the GitHub Actions environment.",
    ),
    run_id: str = typer.Option(
        None,
        "--run-id",
        help="Explicit run ID. Generated when omitted.",
    ),
    matrix_path: Path = typer.Option(
        None,
        "--matrix",
        "-m",
        help="TOML build matrix. Defaults to the built-in release matrix.",
    ),
    local_index: Path = typer.Option(
        None,
        "--local-index",
        help="Publish into a directory index instead of uploading.",
    ),
) -> None:
    """Build, attest and (when the trigger allows it) publish the wheels."""
    settings = ReleaseSettings()
    try:
        matrix = resolve_matrix(matrix_path, settings)
        if from_github_env:
            context = RunContext.from_github_env(
                os.environ,
                grants=settings.grants(),
                workflow_path=settings.workflow_path,
            )
        else:
            context = _context_from_flags(
                settings, trigger, ref, revision, publish, changed, run_id
            )
    except (WheelforgeError, ValueError) as exc:
        console.print(f"[bold red]Cannot start run:[/bold red] {exc}")
        raise typer.Exit(code=1)

    orchestrator = ReleaseOrchestrator(
        context,
        settings.pipeline_config(),
        backend=MaturinBackend(),
        provisioner=LocalToolchainProvisioner(settings.backend_executable),
        index=_select_index(settings, local_index),
    )
    console.print(f"[bold cyan]Run {context.run_id}[/bold cyan] ({context.trigger.kind.value})")
    try:
        report = orchestrator.run(matrix)
    except KeyboardInterrupt:
        orchestrator.cancel()
        orchestrator.machine.fail("interrupted")
        report = orchestrator.report()

    console.print()
    ReportRenderer(console=console).print_report(report)
    raise typer.Exit(code=report.exit_code)
