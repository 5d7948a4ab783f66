"""Fail-closed publication and download predicates.

The gate couples the two lifecycles: a card may publish only when all of
its sources are verified, and a source may be downloaded by the public only
when it is verified and cited by a published card. Both predicates default
to denial.
"""

from __future__ import annotations

import logging
from typing import Callable

from ledger.errors import SourceNotVerifiedError
from ledger.models import EvidenceCard, Source

logger = logging.getLogger(__name__)

SourceLookup = Callable[[str], "Source | None"]
ReferenceLookup = Callable[[str], bool]


class PublicationGate:
    def __init__(self, source_lookup: SourceLookup, reference_lookup: ReferenceLookup) -> None:
        self._source_lookup = source_lookup
        self._reference_lookup = reference_lookup

    def check_publishable(self, card: EvidenceCard) -> None:
        """Raise SourceNotVerifiedError naming the first source that is not VERIFIED.

        Editor-facing: naming the source is safe because publishing is an
        authenticated operation. A missing source counts as unverified.
        """
        for source_id in card.source_ids:
            source = self._source_lookup(source_id)
            if source is None or not source.is_verified:
                logger.info("Publish of card %s blocked by source %s", card.card_id, source_id)
                raise SourceNotVerifiedError(source_id)

    def can_publish(self, card: EvidenceCard) -> bool:
        try:
            self.check_publishable(card)
        except SourceNotVerifiedError:
            return False
        return True

    def can_download(self, source: Source | None) -> bool:
        """True iff the source is VERIFIED, stored, and cited by a published card.

        Public-facing: callers must turn every False into the same error.
        """
        if source is None or not source.is_verified or not source.storage_key:
            return False
        return bool(self._reference_lookup(source.source_id))
