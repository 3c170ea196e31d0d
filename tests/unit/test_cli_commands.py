"""Tests for CLI commands — invocation via typer.testing.CliRunner."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from wheelforge.cli.app import app
from wheelforge.core.orchestrator import ReleaseOrchestrator
from wheelforge.core.run_ledger import RunLedger
from wheelforge.models.config import PipelineConfig
from wheelforge.models.states import RunState
from wheelforge.models.targets import DEFAULT_MATRIX
from wheelforge.models.trigger import TriggerKind

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path: Path) -> Path:
    """Point every configured path at a temp directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("WHEELFORGE_WORK_DIR", str(tmp_path / "work"))
    monkeypatch.setenv("WHEELFORGE_ARTIFACT_STORE_PATH", str(tmp_path / "artifacts"))
    monkeypatch.setenv("WHEELFORGE_LEDGER_PATH", str(tmp_path / "ledger.db"))
    monkeypatch.setenv("WHEELFORGE_CACHE_DIR", str(tmp_path / "cache"))
    for key in ("WHEELFORGE_INDEX_TOKEN", "WHEELFORGE_ATTESTATION_KEY", "WHEELFORGE_MATRIX_PATH"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


# ---------------------------------------------------------------------------
# App registration
# ---------------------------------------------------------------------------


class TestCliApp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "Usage" in result.output

    def test_commands_registered(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for name in ("run", "matrix", "validate", "verify", "history", "keygen"):
            assert name in result.output


# ---------------------------------------------------------------------------
# matrix / validate
# ---------------------------------------------------------------------------


class TestMatrixCommands:
    def test_matrix_default(self):
        result = runner.invoke(app, ["matrix"])
        assert result.exit_code == 0
        for name in ("wheels-windows-x64", "wheels-windows-x86", "wheels-macos-aarch64"):
            assert name in result.output
        assert "4 build request(s)" in result.output

    def test_matrix_from_file(self, cli_env: Path):
        path = cli_env / "matrix.toml"
        path.write_text(
            '[[family]]\nname = "linux"\ntargets = [{ architecture = "aarch64" }]\n',
            encoding="utf-8",
        )
        result = runner.invoke(app, ["matrix", "--matrix", str(path)])
        assert result.exit_code == 0
        assert "wheels-linux-aarch64" in result.output

    def test_matrix_invalid(self, cli_env: Path):
        path = cli_env / "matrix.toml"
        path.write_text("", encoding="utf-8")
        result = runner.invoke(app, ["matrix", "--matrix", str(path)])
        assert result.exit_code == 1
        assert "ConfigurationError" in result.output

    def test_validate_records_skipped_run(self, cli_env: Path):
        result = runner.invoke(app, ["validate", "--revision", "abc123"])
        assert result.exit_code == 0, result.output
        ledger = RunLedger(cli_env / "ledger.db")
        (run_id,) = ledger.get_all_run_ids()
        transitions = [e.state_transition for e in ledger.get_run_entries(run_id)]
        assert transitions == [f"pending->{RunState.SKIPPED_BY_POLICY.value}"]

    def test_validate_builds_nothing(self, cli_env: Path):
        runner.invoke(app, ["validate"])
        assert not any((cli_env / "artifacts").rglob("*.json"))


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRunCommand:
    def test_pull_request_not_touching_workflow(self):
        result = runner.invoke(app, [
            "run", "--trigger", "pull_request", "--revision", "abc123",
            "--changed", "src/lib.rs", "--run-id", "wf-cli-pr",
        ])
        assert result.exit_code == 0, result.output
        assert "skipped_by_policy" in result.output

    def test_missing_attestation_key_fails_before_building(self, cli_env: Path):
        result = runner.invoke(app, [
            "run", "--trigger", "manual_dispatch", "--ref", "refs/heads/main",
            "--revision", "abc123", "--run-id", "wf-cli-nokey",
        ])
        assert result.exit_code == 1
        assert "PermissionDenied" in result.output
        assert not (cli_env / "work" / "wf-cli-nokey" / "build").exists()

    def test_tag_push_flag_on_branch_rejected(self, cli_env: Path):
        result = runner.invoke(app, [
            "run", "--trigger", "tag_push", "--ref", "refs/heads/main",
            "--revision", "abc123", "--run-id", "wf-cli-branch-tag",
        ])
        assert result.exit_code == 1
        assert "Cannot start run" in result.output
        assert not (cli_env / "work" / "wf-cli-branch-tag").exists()

    def test_from_github_env_rejects_branch_push(self, monkeypatch):
        monkeypatch.setenv("GITHUB_EVENT_NAME", "push")
        monkeypatch.setenv("GITHUB_REF", "refs/heads/main")
        result = runner.invoke(app, ["run", "--from-github-env"])
        assert result.exit_code == 1
        assert "Cannot start run" in result.output


# ---------------------------------------------------------------------------
# keygen / verify / history
# ---------------------------------------------------------------------------


class TestKeygen:
    def test_prints_keys(self):
        result = runner.invoke(app, ["keygen"])
        assert result.exit_code == 0
        assert "Public key" in result.output
        assert "WHEELFORGE_ATTESTATION_KEY" in result.output

    def test_writes_private_key(self, cli_env: Path):
        out = cli_env / "keys" / "attest.key"
        result = runner.invoke(app, ["keygen", "--out", str(out)])
        assert result.exit_code == 0
        assert len(out.read_text(encoding="utf-8").strip()) == 64


class TestVerifyCommand:
    @pytest.fixture
    def attested_run(self, make_context, make_backend, make_provisioner, cli_env: Path) -> Path:
        """A manual-dispatch dry run stored under the CLI's configured paths."""
        context = make_context(TriggerKind.MANUAL_DISPATCH, run_id="wf-cli-verify")
        config = PipelineConfig(
            work_dir=cli_env / "work",
            artifact_store_path=cli_env / "artifacts",
            ledger_db_path=cli_env / "ledger.db",
            cache_dir=None,
        )
        orchestrator = ReleaseOrchestrator(
            context, config, backend=make_backend(), provisioner=make_provisioner()
        )
        report = orchestrator.run(DEFAULT_MATRIX)
        assert report.state is RunState.SKIPPED_BY_POLICY
        return orchestrator.store.root / "attestation.json"

    def test_verify_ok(self, attested_run: Path, keypair):
        result = runner.invoke(app, ["verify", str(attested_run), "--public-key", keypair[1]])
        assert result.exit_code == 0, result.output
        assert "Attestation verified" in result.output

    def test_verify_wrong_key(self, attested_run: Path):
        result = runner.invoke(app, ["verify", str(attested_run), "--public-key", "00" * 32])
        assert result.exit_code == 1

    def test_verify_tampered_blob(self, attested_run: Path, cli_env: Path):
        blob = next((cli_env / "artifacts" / "wf-cli-verify" / "blobs").rglob("*.dat"))
        blob.write_bytes(b"tampered")
        result = runner.invoke(app, ["verify", str(attested_run)])
        assert result.exit_code == 1
        assert "FAILED" in result.output

    def test_verify_missing_file(self, cli_env: Path):
        result = runner.invoke(app, ["verify", str(cli_env / "nope.json")])
        assert result.exit_code == 1


class TestHistoryCommand:
    def test_missing_ledger(self):
        result = runner.invoke(app, ["history"])
        assert result.exit_code == 1
        assert "Ledger not found" in result.output

    def test_lists_and_shows_runs(self):
        runner.invoke(app, [
            "run", "--trigger", "pull_request", "--revision", "abc123",
            "--run-id", "wf-cli-history",
        ])
        listing = runner.invoke(app, ["history"])
        assert listing.exit_code == 0
        assert "wf-cli-history" in listing.output

        detail = runner.invoke(app, ["history", "wf-cli-history", "--verify-chain"])
        assert detail.exit_code == 0, detail.output
        assert "valid" in detail.output
        assert "Run wf-cli-history" in detail.output

    def test_unknown_run(self):
        runner.invoke(app, ["validate"])
        result = runner.invoke(app, ["history", "wf-does-not-exist"])
        assert result.exit_code == 1
