"""Content hashing and verification-manifest checks.

Provides the streaming SHA-256 used when sealing a source, plus the
independent re-verification a third party performs with a published
manifest, its signature and the document bytes.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Iterable

from ledger.errors import FileTooLargeError
from ledger.models import VerificationManifest
from ledger.signing import Signer


def hash_stream(chunks: Iterable[bytes], max_bytes: int | None = None) -> tuple[str, int]:
    """Compute the SHA-256 hex digest and byte length of a chunk stream.

    Only one chunk is held at a time. When *max_bytes* is given, the stream
    is abandoned with FileTooLargeError as soon as it passes the bound.
    """
    digest = hashlib.sha256()
    total = 0
    for chunk in chunks:
        total += len(chunk)
        if max_bytes is not None and total > max_bytes:
            raise FileTooLargeError(max_bytes)
        digest.update(chunk)
    return digest.hexdigest(), total


@dataclass
class ManifestCheck:
    """Outcome of re-verifying a manifest."""

    manifest: VerificationManifest
    signature_valid: bool | None = None
    hash_matches: bool | None = None
    size_matches: bool | None = None
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        checks = (self.signature_valid, self.hash_matches, self.size_matches)
        return not self.problems and all(c is not False for c in checks)


def verify_manifest(
    manifest_bytes: bytes,
    signature: str | None = None,
    signer: Signer | None = None,
    document: Iterable[bytes] | None = None,
) -> ManifestCheck:
    """Re-verify a stored manifest.

    The signature is checked against the raw manifest bytes exactly as
    stored (never a re-serialization). When document chunks are supplied,
    their hash and length are compared with the manifest. Checks that could
    not run are left as None.
    """
    manifest = VerificationManifest.from_bytes(manifest_bytes)
    check = ManifestCheck(manifest=manifest)

    if signature is not None and signer is not None:
        check.signature_valid = signer.verify(
            manifest_bytes, signature, manifest.signing_key_id, manifest.algorithm
        )
        if not check.signature_valid:
            check.problems.append("signature does not match manifest bytes")

    if document is not None:
        sha256, length = hash_stream(document)
        check.hash_matches = sha256 == manifest.sha256
        check.size_matches = length == manifest.byte_length
        if not check.hash_matches:
            check.problems.append(f"sha256 mismatch: document is {sha256}")
        if not check.size_matches:
            check.problems.append(f"byte length mismatch: document is {length}")

    return check


def render_certificate_markdown(manifest: VerificationManifest, signature: str | None = None) -> str:
    """Render a Markdown verification certificate for a manifest."""
    lines = [
        "# Source Verification Certificate",
        "",
        f"**Source:** {manifest.source_id}",
        f"**Publisher:** {manifest.publisher}",
        f"**Origin:** {manifest.url}",
        f"**Retrieved:** {manifest.retrieved_at}",
        f"**Verified:** {manifest.verified_at}",
        "",
        "## Content",
        "",
        f"- **SHA-256:** `{manifest.sha256}`",
        f"- **Size:** {manifest.byte_length} bytes",
        f"- **MIME type:** {manifest.mime_type}",
        f"- **Storage key:** `{manifest.storage_key}`",
        "",
        "## Signature",
        "",
        f"- **Algorithm:** {manifest.algorithm}",
        f"- **Key:** {manifest.signing_key_id}",
    ]
    if signature:
        lines.append(f"- **Signature:** `{signature}`")
    lines.append("")
    return "\n".join(lines)
