"""Source verification: staging, hashing, content addressing and signing.

A source is created PENDING. ``finalize`` (for an uploaded file) or
``capture_snapshot`` (for a fetched URL) seals it: the bytes are hashed,
placed at a content-addressed key, described by a signed manifest, and the
record becomes VERIFIED.

Sealing is a saga with no compensating rollback. Every step is safe to
repeat, so a failed call can simply be re-invoked:

    hash -> copy to sources/{id}/{sha256}.{ext} (skipped if present)
         -> reuse or build manifest -> sign -> write manifest if new
         -> update record -> delete staging object (last)

Failures leave the record PENDING; FAILED is never written by this module.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from ledger.config import LedgerConfig
from ledger.errors import (
    ConflictError,
    FileTooLargeError,
    InvalidMimeTypeError,
    NotFoundError,
    ReadOnlyModeError,
    SnapshotFetchError,
    SourceNotPublicError,
)
from ledger.fetcher import Fetcher
from ledger.gate import PublicationGate
from ledger.manifest import hash_stream
from ledger.models import (
    DownloadLink,
    PublicKey,
    Source,
    SourceInput,
    SourcePatch,
    UploadTarget,
    VerificationInfo,
    VerificationManifest,
    VerificationStatus,
)
from ledger.signing import Signer
from ledger.storage import keys
from ledger.storage.document_store import DocumentStore
from ledger.storage.object_store import ObjectChangedError, ObjectStore
from ledger.utils import isoformat, new_id, utc_now

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = (
    "application/pdf",
    "text/html",
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
)

EXTENSION_FOR_MIME = {
    "application/pdf": "pdf",
    "text/html": "html",
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/gif": "gif",
    "image/webp": "webp",
}

# Probe order for a staged upload; "jpg" covers clients that renamed the file.
STAGING_EXTENSIONS = ("pdf", "html", "png", "jpeg", "jpg", "gif", "webp")

MIME_FOR_EXTENSION = {ext: mime for mime, ext in EXTENSION_FOR_MIME.items()}
MIME_FOR_EXTENSION["jpg"] = "image/jpeg"


def normalize_mime(content_type: str | None) -> str:
    """Lower-case a Content-Type and drop parameters such as charset."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def staging_key(source_id: str, extension: str) -> str:
    return f"sources/{source_id}/upload.{extension}"


def content_key(source_id: str, sha256: str, extension: str) -> str:
    return f"sources/{source_id}/{sha256}.{extension}"


def manifest_key(source_id: str, sha256: str) -> str:
    return f"sources/{source_id}/manifests/{sha256}.json"


class SourceVerifier:
    """Owns the Source lifecycle and the public download gate."""

    def __init__(
        self,
        store: DocumentStore,
        objects: ObjectStore,
        signer: Signer,
        config: LedgerConfig,
        fetcher: Fetcher | None = None,
        gate: PublicationGate | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._objects = objects
        self._signer = signer
        self._config = config
        self._fetcher = fetcher
        self.gate = gate
        self._clock = clock
        self._table = config.sources_table

    # -- Records --------------------------------------------------------------

    def create(self, data: SourceInput, actor: str) -> Source:
        self._ensure_writable()
        now = isoformat(self._clock())
        source = Source(
            source_id=new_id(),
            title=data.title,
            publisher=data.publisher,
            url=str(data.url),
            retrieved_at=now,
            doc_type=data.doc_type,
            verification_status=VerificationStatus.PENDING,
            excerpt=data.excerpt,
            notes=data.notes,
            created_at=now,
            updated_at=now,
            created_by=actor,
            updated_by=actor,
        )
        self._store.put(self._table, keys.source_item(source))
        logger.info("Created source %s", source.source_id)
        return source

    def find(self, source_id: str) -> Source | None:
        item = self._store.get(self._table, keys.source_pk(source_id), keys.SOURCE_SK)
        if item is None:
            return None
        return Source.model_validate(keys.strip_keys(item))

    def get(self, source_id: str) -> Source:
        source = self.find(source_id)
        if source is None:
            raise NotFoundError("Source", source_id)
        return source

    def get_many(self, source_ids: Iterable[str]) -> list[Source]:
        """Fetch several sources in request order, skipping missing ids."""
        found = (self.find(sid) for sid in dict.fromkeys(source_ids))
        return [source for source in found if source is not None]

    def update(self, source_id: str, patch: SourcePatch, actor: str) -> Source:
        """Edit descriptive metadata. Hash, key and signature fields are untouched."""
        self._ensure_writable()
        existing = self.get(source_id)
        changes = {
            name: getattr(patch, name)
            for name in patch.model_fields_set
            if getattr(patch, name) is not None or name in ("excerpt", "notes")
        }
        if "url" in changes:
            changes["url"] = str(changes["url"])
        updated = existing.model_copy(
            update={**changes, "updated_at": isoformat(self._clock()), "updated_by": actor}
        )
        self._store.put(self._table, keys.source_item(updated))
        return updated

    # -- Upload ---------------------------------------------------------------

    def request_upload(self, source_id: str, content_type: str, actor: str) -> UploadTarget:
        """Issue a short-lived write target for the source document.

        The content type is checked before anything else is touched.
        """
        mime = normalize_mime(content_type)
        if mime not in ALLOWED_MIME_TYPES:
            raise InvalidMimeTypeError(content_type, ALLOWED_MIME_TYPES)
        self._ensure_writable()

        source = self.get(source_id)
        key = staging_key(source_id, EXTENSION_FOR_MIME[mime])
        now = self._clock()
        expiry = self._config.presigned_url_expiry_seconds
        upload_url = self._objects.presign_put(key, mime, expiry)

        touched = source.model_copy(update={"updated_at": isoformat(now), "updated_by": actor})
        self._store.put(self._table, keys.source_item(touched))

        return UploadTarget(
            upload_url=upload_url,
            storage_key=key,
            expires_at=isoformat(now + timedelta(seconds=expiry)),
        )

    def finalize(self, source_id: str, actor: str) -> Source:
        """Seal an uploaded document and mark the source VERIFIED.

        Re-invoking after a partial failure is safe. Re-invoking after
        success, with no new upload staged, returns the verified source.
        """
        self._ensure_writable()
        source = self.get(source_id)

        staged = self._find_staged_upload(source_id)
        if staged is None:
            if source.is_verified:
                logger.info("Source %s already verified; nothing staged", source_id)
                return source
            raise NotFoundError("Uploaded file", source_id)
        staged_key, staged_ext, meta = staged

        max_bytes = self._config.max_upload_bytes
        if meta.content_length > max_bytes:
            raise FileTooLargeError(max_bytes)

        mime = normalize_mime(meta.content_type)
        if mime not in ALLOWED_MIME_TYPES:
            mime = MIME_FOR_EXTENSION[staged_ext]

        stream = self._objects.open_stream(staged_key)
        if stream is None:
            raise NotFoundError("Uploaded file stream", source_id)
        sha256, byte_length = hash_stream(stream, max_bytes)

        def place(final_key: str) -> None:
            # Only copy the bytes that were hashed.
            try:
                self._objects.copy(staged_key, final_key, if_match=meta.etag)
            except ObjectChangedError as exc:
                raise ConflictError(
                    f"Staged upload for source {source_id} changed while finalizing; retry"
                ) from exc

        sealed = self._seal(source, sha256, byte_length, mime, place, actor)
        self._objects.delete(staged_key)
        return sealed

    def _find_staged_upload(self, source_id: str):
        for ext in STAGING_EXTENSIONS:
            key = staging_key(source_id, ext)
            meta = self._objects.head(key)
            if meta is not None:
                return key, ext, meta
        return None

    # -- Snapshot -------------------------------------------------------------

    def capture_snapshot(
        self,
        source_id: str,
        url: str | None,
        actor: str,
        max_bytes: int | None = None,
    ) -> Source:
        """Fetch *url* (or the recorded source URL when None) and seal the bytes."""
        self._ensure_writable()
        if self._fetcher is None:
            raise SnapshotFetchError("No fetcher configured for snapshot capture")

        source = self.get(source_id)
        target = url or source.url
        limit = max_bytes or self._config.max_snapshot_bytes

        fetched = self._fetcher.fetch(target, limit, self._config.fetch_timeout_seconds)
        if len(fetched.content) > limit:
            raise FileTooLargeError(limit)

        mime = normalize_mime(fetched.content_type)
        if mime not in ALLOWED_MIME_TYPES:
            raise InvalidMimeTypeError(mime or "unknown", ALLOWED_MIME_TYPES)

        sha256, byte_length = hash_stream([fetched.content], limit)

        def place(final_key: str) -> None:
            self._objects.put(final_key, fetched.content, mime)

        logger.info("Captured snapshot of %s for source %s (%d bytes)", target, source_id, byte_length)
        return self._seal(source, sha256, byte_length, mime, place, actor)

    # -- Sealing --------------------------------------------------------------

    def _seal(
        self,
        source: Source,
        sha256: str,
        byte_length: int,
        mime: str,
        place: Callable[[str], None],
        actor: str,
    ) -> Source:
        source_id = source.source_id
        final_key = content_key(source_id, sha256, EXTENSION_FOR_MIME[mime])
        if self._objects.exists(final_key):
            logger.debug("Content key %s already present", final_key)
        else:
            place(final_key)

        man_key = manifest_key(source_id, sha256)
        manifest_bytes = self._objects.get_bytes(man_key)
        is_new_manifest = manifest_bytes is None
        if is_new_manifest:
            manifest = VerificationManifest(
                source_id=source_id,
                storage_key=final_key,
                sha256=sha256,
                byte_length=byte_length,
                mime_type=mime,
                retrieved_at=source.retrieved_at,
                publisher=source.publisher,
                url=source.url,
                verified_at=isoformat(self._clock()),
                algorithm=self._signer.algorithm,
                signing_key_id=self._config.signing_key_id,
            )
            manifest_bytes = manifest.to_bytes()
        else:
            manifest = VerificationManifest.from_bytes(manifest_bytes)
            if manifest.sha256 != sha256 or manifest.storage_key != final_key:
                raise ConflictError(f"Stored manifest {man_key} does not describe this content")
            if manifest.algorithm != self._signer.algorithm:
                raise ConflictError(
                    f"Stored manifest {man_key} was sealed with {manifest.algorithm}, "
                    f"signer uses {self._signer.algorithm}"
                )

        signed = self._signer.sign(manifest_bytes, manifest.signing_key_id, manifest.algorithm)

        if is_new_manifest:
            self._objects.put(man_key, manifest_bytes, "application/json")

        updated = source.model_copy(
            update={
                "sha256": sha256,
                "byte_length": byte_length,
                "mime_type": mime,
                "storage_key": final_key,
                "manifest_key": man_key,
                "signature": signed.signature,
                "signing_key_id": signed.key_id,
                "signing_algorithm": signed.algorithm,
                "verification_status": VerificationStatus.VERIFIED,
                "verified_at": manifest.verified_at,
                "updated_at": isoformat(self._clock()),
                "updated_by": actor,
            }
        )
        self._store.put(self._table, keys.source_item(updated))
        logger.info("Verified source %s sha256=%s", source_id, sha256)
        return updated

    # -- Public reads ---------------------------------------------------------

    def generate_download_url(self, source_id: str) -> DownloadLink:
        """Presigned download for a public, cited, verified source.

        Every denial raises the same SourceNotPublicError so that callers
        cannot tell a missing source from an unverified or unpublished one.
        """
        source = self.find(source_id)
        if self.gate is None or not self.gate.can_download(source):
            logger.debug("Download denied")
            raise SourceNotPublicError()

        extension = EXTENSION_FOR_MIME.get(source.mime_type or "", "bin")
        now = self._clock()
        expiry = self._config.presigned_url_expiry_seconds
        url = self._objects.presign_get(
            source.storage_key, expiry, filename=f"{source.title}.{extension}"
        )
        return DownloadLink(
            download_url=url,
            expires_at=isoformat(now + timedelta(seconds=expiry)),
            filename=source.title,
        )

    def get_verification(self, source_id: str) -> VerificationInfo:
        source = self.get(source_id)
        manifest_url = None
        if source.manifest_key:
            manifest_url = self._objects.presign_get(
                source.manifest_key,
                self._config.presigned_url_expiry_seconds,
                filename="manifest.json",
            )
        return VerificationInfo(
            source_id=source.source_id,
            verification_status=source.verification_status,
            verified_at=source.verified_at,
            sha256=source.sha256,
            byte_length=source.byte_length,
            mime_type=source.mime_type,
            manifest_url=manifest_url,
            signature=source.signature,
            key_id=source.signing_key_id,
            algorithm=source.signing_algorithm,
        )

    def get_public_key(self) -> PublicKey:
        return self._signer.get_public_key(self._config.signing_key_id)

    def _ensure_writable(self) -> None:
        if self._config.read_only:
            raise ReadOnlyModeError()
