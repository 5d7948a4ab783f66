"""
Ledger CLI - offline tools for third-party verification

Re-verify a published manifest against its signature and document bytes,
render a verification certificate, and print the card transition table.
"""
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ledger import __version__
from ledger.cards import VALID_TRANSITIONS
from ledger.errors import SigningError
from ledger.manifest import render_certificate_markdown, verify_manifest
from ledger.models import CardStatus, VerificationManifest
from ledger.signing import LocalSigner
from ledger.utils import iter_file_chunks, setup_logging

console = Console()


def _read_manifest(path: str) -> bytes:
    return Path(path).read_bytes()


# ═══════════════════════════════════════════════════════════════════
# MAIN CLI GROUP
# ═══════════════════════════════════════════════════════════════════

@click.group()
@click.version_option(version=__version__)
@click.option('--log-level', default=None, help='Logging level (defaults to LEDGER_LOG_LEVEL)')
def main(log_level):
    """
    Ledger - evidence record integrity tools

    Verify source manifests and inspect the card lifecycle offline.
    """
    setup_logging(log_level)


# ═══════════════════════════════════════════════════════════════════
# VERIFICATION COMMANDS
# ═══════════════════════════════════════════════════════════════════

@main.command('verify-manifest')
@click.argument('manifest_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--signature', '-s', help='Base64 signature over the manifest bytes')
@click.option('--document', '-d', type=click.Path(exists=True, dir_okay=False),
              help='Document file to hash and compare')
@click.option('--key-secret', envvar='LEDGER_LOCAL_SIGNING_SECRET',
              help='Local signing secret used to check the signature')
def verify_manifest_cmd(manifest_path, signature, document, key_secret):
    """Re-verify a manifest against its signature and document"""
    raw = _read_manifest(manifest_path)

    try:
        signer = LocalSigner(key_secret) if key_secret and signature else None
        chunks = iter_file_chunks(document) if document else None
        check = verify_manifest(raw, signature=signature, signer=signer, document=chunks)
    except (ValidationError, ValueError, SigningError) as e:
        console.print(f"\n[red]✗ Cannot verify manifest: {e}[/red]")
        raise SystemExit(1)

    table = Table(title=f"Manifest {check.manifest.source_id}")
    table.add_column("Check", style="cyan")
    table.add_column("Result", style="magenta")

    def _fmt(value):
        if value is None:
            return "[dim]skipped[/dim]"
        return "[green]pass[/green]" if value else "[red]FAIL[/red]"

    table.add_row("Signature", _fmt(check.signature_valid))
    table.add_row("SHA-256", _fmt(check.hash_matches))
    table.add_row("Byte length", _fmt(check.size_matches))
    console.print(table)

    for problem in check.problems:
        console.print(f"  [red]•[/red] {problem}")

    if not check.ok:
        console.print("\n[red]✗ Manifest verification failed[/red]")
        raise SystemExit(1)
    console.print("\n[green]✓ Manifest verified[/green]")


@main.command()
@click.argument('manifest_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--signature', '-s', help='Signature to include in the certificate')
@click.option('--output', '-o', type=click.Path(), help='Write Markdown to this file')
def certificate(manifest_path, signature, output):
    """Render a Markdown verification certificate"""
    try:
        manifest = VerificationManifest.from_bytes(_read_manifest(manifest_path))
    except (ValidationError, ValueError) as e:
        console.print(f"\n[red]✗ Invalid manifest: {e}[/red]")
        raise SystemExit(1)

    markdown = render_certificate_markdown(manifest, signature)
    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(markdown, encoding="utf-8")
        console.print(f"[green]✓ Saved to {output}[/green]")
    else:
        click.echo(markdown)


# ═══════════════════════════════════════════════════════════════════
# LIFECYCLE COMMANDS
# ═══════════════════════════════════════════════════════════════════

@main.command()
def transitions():
    """Show the evidence card transition table"""
    table = Table(title="Card Transitions")
    table.add_column("From", style="cyan")
    table.add_column("Allowed targets", style="magenta")

    for status in CardStatus:
        targets = sorted(t.value for t in VALID_TRANSITIONS.get(status, ()))
        table.add_row(status.value, ", ".join(targets) or "-")

    console.print(table)


if __name__ == '__main__':
    main()
