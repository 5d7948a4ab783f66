"""
Ledger engine - wires the stores, signer and fetcher into the two lifecycles

The source verifier and the card lifecycle each need the publication gate,
and the gate needs a lookup from each of them. The engine builds both
services first and then hands them the gate.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from ledger.cards import CardLifecycle
from ledger.config import LedgerConfig, get_config
from ledger.fetcher import Fetcher, HttpxFetcher
from ledger.gate import PublicationGate
from ledger.signing import LocalSigner, Signer
from ledger.sources import SourceVerifier
from ledger.storage import DocumentStore, InMemoryDocumentStore, InMemoryObjectStore, ObjectStore
from ledger.utils import utc_now

logger = logging.getLogger(__name__)


class LedgerEngine:
    """Entry point for the evidence ledger core."""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        store: Optional[DocumentStore] = None,
        objects: Optional[ObjectStore] = None,
        signer: Optional[Signer] = None,
        fetcher: Optional[Fetcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or get_config()
        self.store = store or InMemoryDocumentStore()
        self.objects = objects or InMemoryObjectStore(bucket=self.config.sources_bucket)
        self.signer = signer or LocalSigner(self.config.local_signing_secret)
        self.fetcher = fetcher or HttpxFetcher(user_agent=self.config.fetch_user_agent)

        self._sources = SourceVerifier(
            self.store, self.objects, self.signer, self.config, fetcher=self.fetcher, clock=clock
        )
        self._cards = CardLifecycle(self.store, self.config, clock=clock)
        self._gate = PublicationGate(self._sources.find, self._cards.is_referenced_by_published_card)
        self._sources.gate = self._gate
        self._cards.gate = self._gate

        logger.info(
            "Ledger engine ready (reference lookup: %s, read-only: %s)",
            self.config.reference_lookup,
            self.config.read_only,
        )

    @property
    def sources(self) -> SourceVerifier:
        return self._sources

    @property
    def cards(self) -> CardLifecycle:
        return self._cards

    @property
    def gate(self) -> PublicationGate:
        return self._gate
