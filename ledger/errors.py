"""Typed domain errors raised by the ledger core.

Every error carries a stable ``code`` and the HTTP status the (external)
transport layer should answer with. Errors are surfaced to callers unchanged;
the core never retries on its own.
"""

from __future__ import annotations

from typing import Any, Iterable


class LedgerError(Exception):
    """Base exception for the ledger"""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Render the error in the API envelope shape."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if request_id:
            error["requestId"] = request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


class NotFoundError(LedgerError):
    """Missing source, card, card version, or staged object"""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} not found: {resource_id}")
        self.resource = resource
        self.resource_id = resource_id


class InvalidStateTransitionError(LedgerError):
    code = "INVALID_STATE_TRANSITION"
    status_code = 400

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"Invalid state transition from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class SourceNotVerifiedError(LedgerError):
    """Publish blocked; names the offending source (editor-facing)."""

    code = "SOURCE_NOT_VERIFIED"
    status_code = 400

    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source not verified: {source_id}")
        self.source_id = source_id


class SourceNotPublicError(LedgerError):
    """Download blocked.

    The message is constant and carries no source id or reason so that a
    missing, unverified and unpublished source are indistinguishable.
    """

    code = "FORBIDDEN"
    status_code = 403

    def __init__(self) -> None:
        super().__init__("Source not available for public download")


class FileTooLargeError(LedgerError):
    code = "FILE_TOO_LARGE"
    status_code = 400

    def __init__(self, max_bytes: int) -> None:
        super().__init__(f"File exceeds maximum size of {max_bytes} bytes")
        self.max_bytes = max_bytes


class InvalidMimeTypeError(LedgerError):
    code = "INVALID_MIME_TYPE"
    status_code = 400

    def __init__(self, mime_type: str, allowed: Iterable[str]) -> None:
        allowed = list(allowed)
        super().__init__(f"Invalid MIME type: {mime_type}. Allowed: {', '.join(allowed)}")
        self.mime_type = mime_type
        self.allowed = allowed


class ConflictError(LedgerError):
    """Concurrent modification detected (stale expected version)."""

    code = "CONFLICT"
    status_code = 409


class TransactionLimitError(LedgerError):
    """A multi-item write would exceed the store's transaction item limit."""

    code = "TRANSACTION_LIMIT"
    status_code = 500

    def __init__(self, item_count: int, limit: int) -> None:
        super().__init__(
            f"Transaction of {item_count} items exceeds store limit of {limit}",
            details={"itemCount": item_count, "limit": limit},
        )


class SnapshotFetchError(LedgerError):
    code = "SNAPSHOT_FETCH_FAILED"
    status_code = 502


class SigningError(LedgerError):
    code = "SIGNING_FAILED"
    status_code = 502


class ReadOnlyModeError(LedgerError):
    code = "FORBIDDEN"
    status_code = 503

    def __init__(self) -> None:
        super().__init__("System is in read-only mode")
