"""Object store interface and an in-memory implementation.

Keys are hierarchical strings (``sources/{id}/...``). The production object
store is an external collaborator; ``InMemoryObjectStore`` mirrors the
operations the core needs: head, streamed get, put, server-side copy,
delete, and presigned URLs.
"""

from __future__ import annotations

import hashlib
import hmac
import threading
import time
from dataclasses import dataclass
from typing import Iterator, Protocol
from urllib.parse import quote, urlencode


DEFAULT_CHUNK_SIZE = 64 * 1024


class ObjectChangedError(Exception):
    """A conditional copy found the source object with a different ETag."""

    def __init__(self, key: str, expected: str, actual: str) -> None:
        super().__init__(f"Object {key} changed: expected etag {expected}, found {actual}")
        self.key = key
        self.expected = expected
        self.actual = actual


@dataclass(frozen=True)
class ObjectMetadata:
    key: str
    content_length: int
    content_type: str
    etag: str


class ObjectStore(Protocol):
    bucket: str

    def head(self, key: str) -> ObjectMetadata | None: ...

    def open_stream(self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes] | None: ...

    def get_bytes(self, key: str) -> bytes | None: ...

    def put(self, key: str, body: bytes, content_type: str) -> None: ...

    def copy(self, source_key: str, dest_key: str, if_match: str | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...

    def presign_get(self, key: str, expires_in: int, filename: str | None = None) -> str: ...

    def presign_put(self, key: str, content_type: str, expires_in: int) -> str: ...


class InMemoryObjectStore:
    """Thread-safe dict-backed object store.

    Presigned URLs use a ``memory://`` scheme and carry an HMAC over the
    method, key and expiry so tests can check what was granted.
    """

    def __init__(self, bucket: str = "ledger-sources", url_secret: bytes = b"memory-presign") -> None:
        self.bucket = bucket
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()
        self._url_secret = url_secret

    def head(self, key: str) -> ObjectMetadata | None:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            return None
        body, content_type = entry
        return ObjectMetadata(
            key=key,
            content_length=len(body),
            content_type=content_type,
            etag=hashlib.md5(body).hexdigest(),
        )

    def open_stream(self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes] | None:
        """Return a chunk iterator over the object, or None if it is missing."""
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            return None
        body = entry[0]
        return (body[i:i + chunk_size] for i in range(0, len(body), chunk_size))

    def get_bytes(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._objects.get(key)
        return entry[0] if entry is not None else None

    def put(self, key: str, body: bytes, content_type: str) -> None:
        with self._lock:
            self._objects[key] = (bytes(body), content_type)

    def copy(self, source_key: str, dest_key: str, if_match: str | None = None) -> None:
        """Server-side copy. With *if_match*, copy only if the source ETag still matches."""
        with self._lock:
            if source_key not in self._objects:
                raise KeyError(f"No such object: {source_key}")
            entry = self._objects[source_key]
            if if_match is not None:
                actual = hashlib.md5(entry[0]).hexdigest()
                if actual != if_match:
                    raise ObjectChangedError(source_key, if_match, actual)
            self._objects[dest_key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._objects.pop(key, None)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._objects

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))

    # -- Presigning -----------------------------------------------------------

    def presign_get(self, key: str, expires_in: int, filename: str | None = None) -> str:
        params = {"method": "GET"}
        if filename:
            params["disposition"] = f'attachment; filename="{filename}"'
        return self._presign(key, expires_in, params)

    def presign_put(self, key: str, content_type: str, expires_in: int) -> str:
        return self._presign(key, expires_in, {"method": "PUT", "content-type": content_type})

    def _presign(self, key: str, expires_in: int, params: dict[str, str]) -> str:
        expires = str(int(time.time()) + int(expires_in))
        payload = "\n".join([params["method"], self.bucket, key, expires]).encode("utf-8")
        signature = hmac.new(self._url_secret, payload, hashlib.sha256).hexdigest()
        query = urlencode({**params, "expires": expires, "signature": signature})
        return f"memory://{self.bucket}/{quote(key)}?{query}"
