"""Shared test fixtures for the ledger test suite."""

import logging
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from ledger.config import LedgerConfig
from ledger.engine import LedgerEngine
from ledger.fetcher import HttpxFetcher
from ledger.models import CardCategory, CardInput, DocType, EvidenceStrength, SourceInput
from ledger.signing import LocalSigner
from ledger.sources import staging_key
from ledger.storage import InMemoryDocumentStore, InMemoryObjectStore

PDF_BYTES = b"%PDF-1.7\n" + b"enforcement order " * 64 + b"\n%%EOF\n"
HTML_BYTES = b"<html><body><h1>Consent decree</h1></body></html>"


class FakeClock:
    """Deterministic clock that ticks one second per reading."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return LedgerConfig(
        signing_key_id="test-key",
        local_signing_secret="test-secret",
        max_upload_bytes=4096,
        max_snapshot_bytes=2048,
        read_only=False,
    )


@pytest.fixture
def ledger_logging():
    """Restore the ``ledger`` and ``httpx`` loggers after setup_logging runs."""
    package_logger = logging.getLogger("ledger")
    httpx_logger = logging.getLogger("httpx")
    saved = (list(package_logger.handlers), package_logger.level, httpx_logger.level)
    yield package_logger
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    handlers, level, httpx_level = saved
    for handler in handlers:
        package_logger.addHandler(handler)
    package_logger.setLevel(level)
    httpx_logger.setLevel(httpx_level)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def objects():
    return InMemoryObjectStore(bucket="test-bucket")


@pytest.fixture
def signer():
    return LocalSigner("test-secret")


@pytest.fixture
def http_routes():
    """Map of URL -> httpx.Response served by the mock transport."""
    return {}


@pytest.fixture
def fetcher(http_routes):
    def handler(request: httpx.Request) -> httpx.Response:
        response = http_routes.get(str(request.url))
        if response is None:
            return httpx.Response(404, text="not found")
        return response

    return HttpxFetcher(user_agent="ledger-tests", transport=httpx.MockTransport(handler))


@pytest.fixture
def engine(config, store, objects, signer, fetcher, clock):
    return LedgerEngine(
        config=config, store=store, objects=objects, signer=signer, fetcher=fetcher, clock=clock
    )


@pytest.fixture
def source_input():
    return SourceInput(
        title="EPA Consent Decree 2025-17",
        publisher="US Environmental Protection Agency",
        url="https://www.epa.gov/enforcement/decree-2025-17.pdf",
        doc_type=DocType.PDF,
        excerpt="The company agreed to pay a civil penalty.",
    )


def make_card_input(source_ids=(), entity_ids=("acme-corp",), **overrides):
    fields = dict(
        title="Acme fined for wastewater discharge",
        claim="Acme Corp discharged untreated wastewater into the Elm River.",
        summary="The EPA found repeated permit violations between 2022 and 2024.",
        category=CardCategory.environment,
        entity_ids=list(entity_ids),
        event_date=date(2025, 11, 3),
        source_ids=list(source_ids),
        evidence_strength=EvidenceStrength.HIGH,
        tags=["water", "epa"],
    )
    fields.update(overrides)
    return CardInput(**fields)


def upload_and_finalize(engine, source_id, body=PDF_BYTES, content_type="application/pdf", ext="pdf"):
    """Simulate a client PUT to the presigned URL, then seal the source."""
    engine.sources.request_upload(source_id, content_type, actor="editor-1")
    engine.objects.put(staging_key(source_id, ext), body, content_type)
    return engine.sources.finalize(source_id, actor="editor-1")


@pytest.fixture
def verified_source(engine, source_input):
    source = engine.sources.create(source_input, actor="editor-1")
    return upload_and_finalize(engine, source.source_id)


@pytest.fixture
def pending_source(engine, source_input):
    return engine.sources.create(source_input, actor="editor-1")


def publish_path(engine, card_id, actor="editor-1"):
    """Move a DRAFT card through REVIEW to PUBLISHED."""
    engine.cards.submit(card_id, actor)
    return engine.cards.publish(card_id, actor)
