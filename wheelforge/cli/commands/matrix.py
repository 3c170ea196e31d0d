"""``wheelforge matrix`` and ``wheelforge validate`` — inspect the build matrix.

``matrix`` prints the enumerated build requests. ``validate`` performs a
validation-only run, exactly what a pull request touching the workflow
triggers: the matrix is enumerated and checked, nothing is built, and
the run is recorded in the ledger as skipped by policy.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from wheelforge.config import ReleaseSettings
from wheelforge.core.enumerator import enumerate_requests, load_matrix
from wheelforge.core.errors import WheelforgeError
from wheelforge.core.orchestrator import ReleaseOrchestrator
from wheelforge.models.config import RunContext
from wheelforge.models.targets import DEFAULT_MATRIX, BuildMatrix
from wheelforge.models.trigger import TriggerContext, TriggerKind
from wheelforge.monitor.renderer import ReportRenderer

console = Console()


def resolve_matrix(path: Path | None, settings: ReleaseSettings) -> BuildMatrix:
    """Load the matrix from *path*, the configured path, or the built-in default."""
    matrix_path = path or settings.matrix_path
    if matrix_path is None:
        return DEFAULT_MATRIX
    return load_matrix(matrix_path)


def matrix_cmd(
    matrix_path: Path = typer.Option(
        None,
        "--matrix",
        "-m",
        help="TOML build matrix. Defaults to the built-in release matrix.",
    ),
    revision: str = typer.Option(
        "HEAD",
        "--revision",
        help="Source revision the requests are bound to.",
    ),
) -> None:
    """Show the build requests the matrix expands into."""
    settings = ReleaseSettings()
    try:
        matrix = resolve_matrix(matrix_path, settings)
        requests = enumerate_requests(matrix, revision)
    except WheelforgeError as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=1)

    ReportRenderer(console=console).print_requests(requests)
    console.print(f"[dim]{len(requests)} build request(s) at {revision}[/dim]")


def validate_cmd(
    matrix_path: Path = typer.Option(
        None,
        "--matrix",
        "-m",
        help="TOML build matrix. Defaults to the built-in release matrix.",
    ),
    revision: str = typer.Option(
        "HEAD",
        "--revision",
        help="Source revision recorded for the validation run.",
    ),
) -> None:
    """Validate the pipeline definition without building anything."""
    settings = ReleaseSettings()
    try:
        matrix = resolve_matrix(matrix_path, settings)
    except WheelforgeError as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=1)

    context = RunContext(
        source_revision=revision,
        repository=settings.repository,
        workflow_path=settings.workflow_path,
        trigger=TriggerContext(kind=TriggerKind.PULL_REQUEST),
        grants=settings.grants(),
    )
    orchestrator = ReleaseOrchestrator(context, settings.pipeline_config())
    report = orchestrator.run(matrix)

    renderer = ReportRenderer(console=console)
    if report.succeeded:
        renderer.print_requests(orchestrator.validate(matrix))
    renderer.print_report(report)
    raise typer.Exit(code=report.exit_code)
