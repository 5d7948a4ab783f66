"""Bounded URL fetcher used to capture document snapshots.

The fetch is bounded twice: by a wall-clock deadline over the whole
transfer, and by a byte limit that is checked against the declared
Content-Length first and then against the bytes actually read.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import httpx

from ledger.errors import FileTooLargeError, SnapshotFetchError

logger = logging.getLogger(__name__)

_DEFAULT_USER_AGENT = "AccountabilityLedger/1.0 (+snapshot)"


@dataclass(frozen=True)
class FetchedDocument:
    url: str
    content: bytes
    content_type: str
    status_code: int


class Fetcher(Protocol):
    def fetch(self, url: str, max_bytes: int, timeout_seconds: float) -> FetchedDocument: ...


class HttpxFetcher:
    """Fetch a URL with httpx, streaming the body under size and time bounds."""

    def __init__(
        self,
        user_agent: str = _DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.user_agent = user_agent
        self._transport = transport
        self._clock = clock

    def fetch(self, url: str, max_bytes: int, timeout_seconds: float) -> FetchedDocument:
        deadline = self._clock() + timeout_seconds
        try:
            with httpx.Client(
                timeout=httpx.Timeout(timeout_seconds),
                follow_redirects=True,
                transport=self._transport,
                headers={"User-Agent": self.user_agent},
            ) as client:
                with client.stream("GET", url) as resp:
                    if not 200 <= resp.status_code < 300:
                        raise SnapshotFetchError(
                            f"Fetching {url} returned HTTP {resp.status_code}",
                            details={"statusCode": resp.status_code},
                        )

                    declared = resp.headers.get("content-length", "")
                    if declared.isdigit() and int(declared) > max_bytes:
                        logger.warning("Declared length %s for %s exceeds %d", declared, url, max_bytes)
                        raise FileTooLargeError(max_bytes)

                    body = bytearray()
                    for chunk in resp.iter_bytes():
                        body.extend(chunk)
                        if len(body) > max_bytes:
                            logger.warning("Body of %s exceeded %d bytes while reading", url, max_bytes)
                            raise FileTooLargeError(max_bytes)
                        if self._clock() > deadline:
                            raise SnapshotFetchError(f"Fetching {url} exceeded {timeout_seconds}s")

                    return FetchedDocument(
                        url=str(resp.url),
                        content=bytes(body),
                        content_type=resp.headers.get("content-type", ""),
                        status_code=resp.status_code,
                    )
        except httpx.TimeoutException as exc:
            raise SnapshotFetchError(f"Fetching {url} timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("Fetching %s failed: %s", url, exc)
            raise SnapshotFetchError(f"Fetching {url} failed: {exc}") from exc
