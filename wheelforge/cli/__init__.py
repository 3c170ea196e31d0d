"""Wheelforge CLI — Typer-based command-line interface.

Provides the ``wheelforge`` command with subcommands for running the
release pipeline, inspecting and validating the build matrix, verifying
saved attestations and generating attestation keys.

All output uses Rich for formatted terminal display.
"""
