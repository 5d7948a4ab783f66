"""Tests for the ledger CLI (click.testing.CliRunner)."""

import logging

import pytest
from click.testing import CliRunner

from ledger.cli import main
from tests.conftest import PDF_BYTES, upload_and_finalize

pytestmark = pytest.mark.usefixtures("ledger_logging")


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def sealed_files(engine, pending_source, tmp_path):
    """Manifest, signature and document of a verified source, written to disk."""
    source = upload_and_finalize(engine, pending_source.source_id)
    manifest_path = tmp_path / "manifest.json"
    manifest_path.write_bytes(engine.objects.get_bytes(source.manifest_key))
    document_path = tmp_path / "document.pdf"
    document_path.write_bytes(PDF_BYTES)
    return manifest_path, source.signature, document_path


class TestVerifyManifestCommand:
    def test_valid_manifest_passes(self, runner, sealed_files):
        manifest_path, signature, document_path = sealed_files
        result = runner.invoke(main, [
            "verify-manifest", str(manifest_path),
            "--signature", signature,
            "--document", str(document_path),
            "--key-secret", "test-secret",
        ])
        assert result.exit_code == 0, result.output
        assert "Manifest verified" in result.output

    def test_tampered_document_fails(self, runner, sealed_files, tmp_path):
        manifest_path, signature, _ = sealed_files
        tampered = tmp_path / "tampered.pdf"
        tampered.write_bytes(PDF_BYTES + b"extra")
        result = runner.invoke(main, [
            "verify-manifest", str(manifest_path), "--document", str(tampered),
        ])
        assert result.exit_code == 1
        assert "sha256 mismatch" in result.output

    def test_wrong_secret_fails(self, runner, sealed_files):
        manifest_path, signature, _ = sealed_files
        result = runner.invoke(main, [
            "verify-manifest", str(manifest_path), "--signature", signature, "--key-secret", "wrong",
        ])
        assert result.exit_code == 1

    def test_invalid_manifest_file(self, runner, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json")
        result = runner.invoke(main, ["verify-manifest", str(bad)])
        assert result.exit_code == 1
        assert "Cannot verify manifest" in result.output


class TestOtherCommands:
    def test_transitions_table(self, runner):
        result = runner.invoke(main, ["transitions"])
        assert result.exit_code == 0
        assert "RETRACTED" in result.output
        assert "ARCHIVED" in result.output

    def test_certificate_to_stdout(self, runner, sealed_files):
        manifest_path, signature, _ = sealed_files
        result = runner.invoke(main, ["certificate", str(manifest_path), "--signature", signature])
        assert result.exit_code == 0
        assert "# Source Verification Certificate" in result.output

    def test_certificate_to_file(self, runner, sealed_files, tmp_path):
        manifest_path, _, _ = sealed_files
        out = tmp_path / "certs" / "cert.md"
        result = runner.invoke(main, ["certificate", str(manifest_path), "-o", str(out)])
        assert result.exit_code == 0
        assert out.read_text().startswith("# Source Verification Certificate")

    def test_log_level_option_configures_package_logger(self, runner, ledger_logging):
        result = runner.invoke(main, ["--log-level", "debug", "transitions"])
        assert result.exit_code == 0
        assert ledger_logging.level == logging.DEBUG
