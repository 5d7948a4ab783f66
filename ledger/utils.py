"""
Utility functions for the evidence ledger

Provides logging setup, id generation, clock helpers and file chunking
"""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ledger.config import get_config


# ═══════════════════════════════════════════════════════════════════
# LOGGING
# ═══════════════════════════════════════════════════════════════════

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


def setup_logging(log_level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """Attach handlers to the ``ledger`` logger and return it.

    The level defaults to ``LedgerConfig.log_level`` (``LEDGER_LOG_LEVEL``).
    Only the package logger gets handlers, so a host application's root
    logging is left alone. Calling again replaces the previous handlers.
    httpx request logging is held at WARNING or above.
    """
    name = (log_level or get_config().log_level).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")

    package_logger = logging.getLogger("ledger")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    package_logger.setLevel(level)

    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return package_logger


# ═══════════════════════════════════════════════════════════════════
# ID GENERATION
# ═══════════════════════════════════════════════════════════════════

def new_id() -> str:
    """Generate an opaque, unguessable record id"""
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════
# CLOCK
# ═══════════════════════════════════════════════════════════════════

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + (
        f"{moment.microsecond // 1000:03d}Z"
    )


def month_bucket(moment: datetime) -> str:
    """Coarse YYYY-MM bucket used to partition the public feed."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m")


def previous_month_buckets(moment: datetime, count: int) -> list[str]:
    """Return *count* YYYY-MM buckets, newest first, starting at *moment*."""
    year, month = moment.astimezone(timezone.utc).year, moment.astimezone(timezone.utc).month
    buckets = []
    for _ in range(count):
        buckets.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return buckets


# ═══════════════════════════════════════════════════════════════════
# FILE READING
# ═══════════════════════════════════════════════════════════════════

def iter_file_chunks(file_path: str | Path, chunk_size: int = 65536) -> Iterator[bytes]:
    """Yield a file's bytes in fixed-size chunks"""
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(chunk_size), b""):
            yield byte_block
