"""Rich terminal renderer for run reports.

Turns a ``RunReport`` into Rich renderables: a per-target build table,
an attestation summary, a per-artifact publish table and a final panel.

Color scheme
------------
- green     : succeeded / published / attested
- cyan      : skipped_existing / skipped_by_policy
- red       : failed
- yellow    : cancelled / built
- dim       : pending
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from wheelforge.models.attestation import AttestationRecord
from wheelforge.models.publish import PublishStatus
from wheelforge.models.reports import RunReport
from wheelforge.models.states import RunState, TargetStatus
from wheelforge.models.targets import BuildRequest

# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_RUN_STYLES: dict[RunState, str] = {
    RunState.PENDING: "dim",
    RunState.BUILT: "yellow",
    RunState.ATTESTED: "green",
    RunState.PUBLISHED: "bold green",
    RunState.SKIPPED_BY_POLICY: "bold cyan",
    RunState.FAILED: "bold red",
}

_TARGET_ICONS: dict[TargetStatus, str] = {
    TargetStatus.PENDING: "[dim]PENDING[/dim]",
    TargetStatus.SUCCEEDED: "[green]SUCCEEDED[/green]",
    TargetStatus.FAILED: "[bold red]FAILED[/bold red]",
    TargetStatus.CANCELLED: "[yellow]CANCELLED[/yellow]",
}

_PUBLISH_ICONS: dict[PublishStatus, str] = {
    PublishStatus.PUBLISHED: "[green]published[/green]",
    PublishStatus.SKIPPED_EXISTING: "[cyan]skipped_existing[/cyan]",
    PublishStatus.FAILED: "[bold red]failed[/bold red]",
}


class ReportRenderer:
    """Renders run reports and matrices as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def _target_table(self, report: RunReport) -> Table:
        table = Table(title="Builds", header_style="bold cyan", expand=True)
        table.add_column("Bundle", min_width=24)
        table.add_column("Status", justify="center", min_width=12)
        table.add_column("Cache", justify="center", width=7)
        table.add_column("Time", justify="right", width=9)
        table.add_column("Details")

        for target in report.targets:
            details = (
                f"[red]{target.error_type}: {target.reason}[/red]"
                if target.error_type
                else (f"[dim]{target.reason}[/dim]" if target.reason else "[dim]-[/dim]")
            )
            table.add_row(
                target.bundle_name,
                _TARGET_ICONS.get(target.status, target.status.value),
                "warm" if target.cache_warm else "[dim]cold[/dim]",
                f"{target.duration_seconds:.1f}s",
                details,
            )
        return table

    def _outcome_table(self, report: RunReport) -> Table:
        table = Table(title="Publish", header_style="bold cyan", expand=True)
        table.add_column("Bundle", min_width=24)
        table.add_column("Artifact", min_width=30)
        table.add_column("Outcome", justify="center", min_width=16)
        table.add_column("Reason")

        for outcome in report.outcomes:
            table.add_row(
                outcome.bundle_name,
                outcome.identity.filename,
                _PUBLISH_ICONS.get(outcome.status, outcome.status.value),
                outcome.reason or "[dim]-[/dim]",
            )
        return table

    def render_attestation(self, record: AttestationRecord) -> Panel:
        lines = [
            f"[bold]Statement:[/bold] sha256:{record.statement_digest}",
            f"[bold]Revision:[/bold]  {record.source_revision}",
            f"[bold]Key:[/bold]       {record.key_fingerprint}",
            f"[bold]Subjects:[/bold]  {len(record.subjects)} "
            f"across {len(record.bundle_names)} bundle(s)",
        ]
        lines.extend(f"  [dim]{s.name}[/dim]" for s in record.subjects)
        return Panel(
            "\n".join(lines),
            title="[bold]Provenance[/bold]",
            border_style="green",
            padding=(0, 1),
        )

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def render_report(self, report: RunReport) -> Panel:
        """Render a RunReport as one Panel."""
        parts: list = []
        if report.targets:
            parts.append(self._target_table(report))
        if report.attestation is not None:
            parts.append(self.render_attestation(report.attestation))
        if report.outcomes:
            parts.append(self._outcome_table(report))
        if report.errors:
            parts.append(
                Text.from_markup(
                    "\n".join(f"[red]- {err}[/red]" for err in report.errors)
                )
            )

        style = _RUN_STYLES.get(report.state, "")
        trigger = report.trigger
        summary = "  |  ".join([
            f"[bold]Run:[/bold] {report.run_id}",
            f"[bold]Trigger:[/bold] {trigger.kind.value}"
            + (f" ({trigger.ref_name})" if trigger.ref_name else ""),
            f"[bold]State:[/bold] [{style}]{report.state.value}[/{style}]",
        ])
        parts.append(Text(""))
        parts.append(Text.from_markup(summary))

        return Panel(
            Group(*parts),
            title="[bold]Wheelforge Release[/bold]",
            border_style="green" if report.succeeded else "red",
            padding=(1, 2),
        )

    def print_report(self, report: RunReport) -> None:
        self.console.print(self.render_report(report))

    def print_requests(self, requests: list[BuildRequest]) -> None:
        """Print the enumerated build requests of a matrix."""
        table = Table(title="Build matrix", header_style="bold cyan")
        table.add_column("Family", style="cyan")
        table.add_column("Target")
        table.add_column("Runner", style="dim")
        table.add_column("Bundle", style="green")
        for request in requests:
            table.add_row(
                request.family,
                request.target.architecture,
                request.target.runner_class,
                request.bundle_name,
            )
        self.console.print(table)

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Run ledger for {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Run ledger for {run_id} is BROKEN![/bold red]")
