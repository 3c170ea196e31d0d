"""``wheelforge history [RUN_ID]`` — show recorded transitions from the run ledger.

Without a run ID, lists the most recent runs. The ledger is read-only
here; every display re-reads it.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from wheelforge.config import ReleaseSettings
from wheelforge.core.run_ledger import LedgerIntegrityError, RunLedger
from wheelforge.models.states import RunState
from wheelforge.monitor.renderer import ReportRenderer

console = Console()

_STATE_MARKUP: dict[str, str] = {
    RunState.PUBLISHED.value: "[bold green]published[/bold green]",
    RunState.SKIPPED_BY_POLICY.value: "[cyan]skipped_by_policy[/cyan]",
    RunState.FAILED.value: "[bold red]failed[/bold red]",
}


def history_cmd(
    run_id: str = typer.Argument(
        None,
        help="The run to show. Lists recent runs when omitted.",
    ),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the hash chain integrity before displaying.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database. Defaults to the configured ledger.",
    ),
    limit: int = typer.Option(10, help="Number of runs to list."),
) -> None:
    """Show the transitions recorded for a run."""
    db_path = ledger_db or ReleaseSettings().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    if run_id is None:
        runs = ledger.get_run_states()
        if not runs:
            console.print("[dim]No runs recorded.[/dim]")
            return
        table = Table(title="Recent runs", header_style="bold cyan")
        table.add_column("Run", style="cyan", no_wrap=True)
        table.add_column("State")
        for rid, state in runs[:limit]:
            table.add_row(rid, _STATE_MARKUP.get(state, state))
        console.print(table)
        if len(runs) > limit:
            console.print(f"  [dim]... and {len(runs) - limit} more[/dim]")
        return

    entries = ledger.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        raise typer.Exit(code=1)

    if verify_chain:
        renderer = ReportRenderer(console=console)
        try:
            valid = ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]{exc}[/bold red]")
            valid = False
        renderer.print_chain_verification(run_id, valid)
        if not valid:
            raise typer.Exit(code=1)

    table = Table(title=f"Run {run_id}", header_style="bold cyan", expand=True)
    table.add_column("Time", style="dim", width=10)
    table.add_column("Subject", min_width=22)
    table.add_column("Transition", min_width=24)
    table.add_column("Detail")
    for entry in entries:
        table.add_row(
            entry.timestamp_utc.strftime("%H:%M:%S"),
            entry.subject,
            entry.state_transition,
            entry.detail or "[dim]-[/dim]",
        )
    console.print(table)
