"""Main Typer application — imports and registers all CLI commands.

Entry point: ``wheelforge`` (configured via pyproject.toml scripts).

Commands: run, matrix, validate, verify, history, keygen.
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from wheelforge.cli.commands.history import history_cmd
from wheelforge.cli.commands.keygen import keygen_cmd
from wheelforge.cli.commands.matrix import matrix_cmd, validate_cmd
from wheelforge.cli.commands.run import run_cmd
from wheelforge.cli.commands.verify import verify_cmd
from wheelforge.config import ReleaseSettings

app = typer.Typer(
    name="wheelforge",
    help="Wheelforge: build, attest and publish native Python wheels.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Run the release pipeline once.")(run_cmd)
app.command(name="matrix", help="Show the enumerated build matrix.")(matrix_cmd)
app.command(name="validate", help="Validate the pipeline without building.")(validate_cmd)
app.command(name="verify", help="Verify a saved provenance attestation.")(verify_cmd)
app.command(name="history", help="Show run transitions from the ledger.")(history_cmd)
app.command(name="keygen", help="Generate an attestation signing key.")(keygen_cmd)


def configure_logging(level: str) -> None:
    """Route library logging through Rich at *level*."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Wheelforge: build, attest and publish native Python wheels."""
    configure_logging("DEBUG" if verbose else ReleaseSettings().log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
