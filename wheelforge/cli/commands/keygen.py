"""``wheelforge keygen`` — generate an Ed25519 attestation key pair."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from wheelforge.bridge.crypto_bridge import generate_keypair, key_fingerprint

console = Console()


def keygen_cmd(
    out: Path = typer.Option(
        None,
        "--out",
        "-o",
        help="Write the private key to this file (mode 0600) instead of printing it.",
    ),
) -> None:
    """Generate a signing key for provenance attestations.

    Export the private key as ``WHEELFORGE_ATTESTATION_KEY``; publish the
    public key so consumers can pin it with ``wheelforge verify --public-key``.
    """
    private_key, public_key = generate_keypair()

    lines = [
        f"[bold]Public key:[/bold]  {public_key}",
        f"[bold]Fingerprint:[/bold] {key_fingerprint(public_key)}",
    ]
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(private_key + "\n", encoding="utf-8")
        out.chmod(0o600)
        lines.append(f"[bold]Private key:[/bold] written to {out}")
    else:
        lines.append(f"[bold]Private key:[/bold] {private_key}")
        lines.append("")
        lines.append("[dim]export WHEELFORGE_ATTESTATION_KEY=<private key>[/dim]")

    console.print(
        Panel(
            "\n".join(lines),
            title="[bold]Attestation key[/bold]",
            border_style="cyan",
            padding=(1, 2),
        )
    )
