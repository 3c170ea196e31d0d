"""``wheelforge verify ATTESTATION`` — check a saved attestation against a store.

Verifies the statement digest, the Ed25519 signature, the source
revision binding and that every stored bundle file matches an attested
subject. Optionally pins the signing key and checks the run ledger chain.
"""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console

from wheelforge.config import ReleaseSettings
from wheelforge.core.artifact_store import RunArtifactStore
from wheelforge.core.attestor import load_attestation, verify_attestation
from wheelforge.core.publish_gate import BUNDLE_PATTERN
from wheelforge.core.run_ledger import LedgerIntegrityError, RunLedger
from wheelforge.monitor.renderer import ReportRenderer

console = Console()


def verify_cmd(
    attestation: Path = typer.Argument(
        ...,
        help="Path to a saved attestation.json.",
    ),
    artifact_dir: Path = typer.Option(
        None,
        "--artifacts",
        "-a",
        help="Artifact store root. Defaults to the configured store.",
    ),
    public_key: str = typer.Option(
        None,
        "--public-key",
        help="Require the attestation to be signed by this hex public key.",
    ),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Also verify the run ledger hash chain.",
    ),
) -> None:
    """Verify a provenance attestation and the bundles it covers."""
    settings = ReleaseSettings()
    if not attestation.exists():
        console.print(f"[bold red]Attestation not found:[/bold red] {attestation}")
        raise typer.Exit(code=1)
    try:
        record = load_attestation(attestation)
    except ValidationError as exc:
        console.print(f"[bold red]Malformed attestation:[/bold red] {exc}")
        raise typer.Exit(code=1)

    store_root = artifact_dir or settings.artifact_store_path
    if not (store_root / record.run_id).exists():
        console.print(f"[bold red]No artifacts for run {record.run_id}[/bold red] in {store_root}")
        raise typer.Exit(code=1)
    store = RunArtifactStore(store_root, record.run_id)
    bundles = store.get_all(BUNDLE_PATTERN)

    renderer = ReportRenderer(console=console)
    renderer.console.print(renderer.render_attestation(record))

    ok = verify_attestation(record, bundles, trusted_public_key=public_key)
    damaged = [b.name for b in bundles if not store.verify_bundle(b)]
    if damaged:
        console.print(f"[bold red]Stored bytes do not match manifests:[/bold red] {damaged}")
        ok = False

    if verify_chain:
        ledger = RunLedger(settings.ledger_path)
        try:
            valid = ledger.verify_chain(record.run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]{exc}[/bold red]")
            valid = False
        renderer.print_chain_verification(record.run_id, valid)
        ok = ok and valid

    if ok:
        console.print(
            f"[green]Attestation verified:[/green] {len(record.subjects)} subject(s) "
            f"at {record.source_revision}"
        )
    else:
        console.print("[bold red]Attestation verification FAILED.[/bold red]")
        raise typer.Exit(code=1)
