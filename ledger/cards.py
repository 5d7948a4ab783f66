"""Evidence card lifecycle: versioned state machine and publish fan-out.

Every mutation appends a full snapshot row with ``version + 1``; rows are
never overwritten. The new row is written with a "must not exist" condition,
so two writers racing from the same version cannot both succeed: the loser
gets ConflictError and the version sequence stays gapless.

Publishing writes, in one transaction, the version row, the public feed row,
one fan-out row per entity and one reverse-index row per cited source.
Entity and source-ref rows left over from an earlier publish that the new
version no longer cites are deleted in the same transaction, and those
deletes count toward the transaction item limit.
Dispute, correct and retract only append a version row. Index rows keep the
payload of the last publish, so public listings can show a stale status
until the card is published again.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from ledger.config import LedgerConfig
from ledger.errors import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ReadOnlyModeError,
    TransactionLimitError,
)
from ledger.gate import PublicationGate
from ledger.models import CardCategory, CardInput, CardPatch, CardStatus, EvidenceCard
from ledger.storage import keys
from ledger.storage.document_store import (
    Condition,
    ConditionFailedError,
    DeleteRequest,
    DocumentStore,
    PutRequest,
    TransactionCanceledError,
    TransactionTooLargeError,
)
from ledger.storage.pagination import Page, decode_cursor, encode_cursor
from ledger.utils import isoformat, month_bucket, new_id, previous_month_buckets, utc_now

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[CardStatus, frozenset[CardStatus]] = {
    CardStatus.DRAFT: frozenset({CardStatus.REVIEW, CardStatus.ARCHIVED}),
    CardStatus.REVIEW: frozenset({CardStatus.DRAFT, CardStatus.PUBLISHED, CardStatus.ARCHIVED}),
    CardStatus.PUBLISHED: frozenset(
        {CardStatus.DISPUTED, CardStatus.CORRECTED, CardStatus.RETRACTED, CardStatus.ARCHIVED}
    ),
    CardStatus.DISPUTED: frozenset(
        {CardStatus.PUBLISHED, CardStatus.CORRECTED, CardStatus.RETRACTED, CardStatus.ARCHIVED}
    ),
    CardStatus.CORRECTED: frozenset({CardStatus.DISPUTED, CardStatus.RETRACTED, CardStatus.ARCHIVED}),
    CardStatus.RETRACTED: frozenset({CardStatus.ARCHIVED}),
    CardStatus.ARCHIVED: frozenset({CardStatus.DRAFT}),
}

EDITABLE_STATUSES = frozenset({CardStatus.DRAFT, CardStatus.REVIEW})

COUNTERPOINT_SEPARATOR = "\n\n---\n\n"

# Card fields a patch may set to None; all others ignore explicit nulls.
_NULLABLE_FIELDS = {"jurisdiction", "counterpoint", "score_signals"}


def can_transition(from_status: CardStatus, to_status: CardStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def append_annotation(counterpoint: str | None, kind: str, timestamp: str, note: str) -> str:
    """Append a labelled entry to the counterpoint log."""
    entry = f"[{kind} {timestamp}]: {note}"
    return f"{counterpoint}{COUNTERPOINT_SEPARATOR}{entry}" if counterpoint else entry


class CardLifecycle:
    """Owns the evidence card state machine and its denormalized indices."""

    def __init__(
        self,
        store: DocumentStore,
        config: LedgerConfig,
        gate: PublicationGate | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._config = config
        self.gate = gate
        self._clock = clock
        self._table = config.cards_table

    # -- Reads ----------------------------------------------------------------

    def get(self, card_id: str, version: int | None = None) -> EvidenceCard:
        """Return a specific version, or the current (highest) version."""
        if version is not None:
            item = self._store.get(self._table, keys.card_pk(card_id), keys.version_sk(version))
            if item is None:
                raise NotFoundError("Card", f"{card_id}@v{version}")
            return EvidenceCard.model_validate(keys.strip_keys(item))

        result = self._store.query(
            self._table,
            keys.card_pk(card_id),
            sort_prefix=keys.VERSION_PREFIX,
            reverse=True,
            limit=1,
        )
        if not result.items:
            raise NotFoundError("Card", card_id)
        return EvidenceCard.model_validate(keys.strip_keys(result.items[0]))

    def history(self, card_id: str) -> list[EvidenceCard]:
        """All stored versions of a card, oldest first."""
        result = self._store.query(self._table, keys.card_pk(card_id), sort_prefix=keys.VERSION_PREFIX)
        if not result.items:
            raise NotFoundError("Card", card_id)
        return [EvidenceCard.model_validate(keys.strip_keys(item)) for item in result.items]

    # -- Create / edit --------------------------------------------------------

    def create(self, data: CardInput, actor: str) -> EvidenceCard:
        self._ensure_writable()
        now = isoformat(self._clock())
        card = EvidenceCard(
            card_id=new_id(),
            **data.model_dump(),
            status=CardStatus.DRAFT,
            version=1,
            created_at=now,
            updated_at=now,
            created_by=actor,
            updated_by=actor,
        )
        self._write_version(card)
        logger.info("Created card %s", card.card_id)
        return card

    def update(
        self,
        card_id: str,
        patch: CardPatch,
        actor: str,
        expected_version: int | None = None,
    ) -> EvidenceCard:
        """Write a full new snapshot with the patch applied (DRAFT/REVIEW only)."""
        self._ensure_writable()
        card = self._load_current(card_id, expected_version)
        if card.status not in EDITABLE_STATUSES:
            raise InvalidStateTransitionError(card.status.value, "EDIT")

        changes: dict[str, Any] = {}
        for name in patch.model_fields_set:
            value = getattr(patch, name)
            if value is None and name not in _NULLABLE_FIELDS:
                continue
            changes[name] = value

        updated = EvidenceCard.model_validate(
            {
                **card.model_dump(),
                **changes,
                "version": card.version + 1,
                "updated_at": isoformat(self._clock()),
                "updated_by": actor,
            }
        )
        return self._write_version(updated)

    # -- Transitions ----------------------------------------------------------

    def submit(self, card_id: str, actor: str, expected_version: int | None = None) -> EvidenceCard:
        return self._transition(card_id, CardStatus.REVIEW, actor, expected_version)

    def return_to_draft(self, card_id: str, actor: str, expected_version: int | None = None) -> EvidenceCard:
        return self._transition(card_id, CardStatus.DRAFT, actor, expected_version)

    def archive(self, card_id: str, actor: str, expected_version: int | None = None) -> EvidenceCard:
        return self._transition(card_id, CardStatus.ARCHIVED, actor, expected_version)

    def restore(self, card_id: str, actor: str, expected_version: int | None = None) -> EvidenceCard:
        """Bring an archived card back to DRAFT. Only ARCHIVED cards are restorable."""
        return self._transition(
            card_id, CardStatus.DRAFT, actor, expected_version, allowed_from=frozenset({CardStatus.ARCHIVED})
        )

    def dispute(self, card_id: str, reason: str, actor: str, expected_version: int | None = None) -> EvidenceCard:
        return self._annotated_transition(card_id, CardStatus.DISPUTED, "Dispute", reason, actor, expected_version)

    def correct(
        self, card_id: str, correction_note: str, actor: str, expected_version: int | None = None
    ) -> EvidenceCard:
        return self._annotated_transition(
            card_id, CardStatus.CORRECTED, "Correction", correction_note, actor, expected_version
        )

    def retract(self, card_id: str, reason: str, actor: str, expected_version: int | None = None) -> EvidenceCard:
        return self._annotated_transition(
            card_id, CardStatus.RETRACTED, "Retraction", reason, actor, expected_version
        )

    def publish(self, card_id: str, actor: str, expected_version: int | None = None) -> EvidenceCard:
        """Publish the current version and write its indices atomically.

        Fails with SourceNotVerifiedError (naming the source) when any cited
        source is not VERIFIED; nothing is written in that case.
        """
        self._ensure_writable()
        card = self._load_current(card_id, expected_version)
        if not can_transition(card.status, CardStatus.PUBLISHED):
            raise InvalidStateTransitionError(card.status.value, CardStatus.PUBLISHED.value)
        if self.gate is None:
            raise RuntimeError("CardLifecycle has no PublicationGate configured")
        self.gate.check_publishable(card)

        now = self._clock()
        published = card.model_copy(
            update={
                "status": CardStatus.PUBLISHED,
                "publish_date": card.publish_date or now.date(),
                "version": card.version + 1,
                "updated_at": isoformat(now),
                "updated_by": actor,
            }
        )
        bucket = month_bucket(now)

        requests = [
            PutRequest(self._table, keys.card_version_item(published), Condition.NOT_EXISTS),
            PutRequest(self._table, keys.public_feed_item(published, bucket)),
        ]
        requests += [
            PutRequest(self._table, keys.entity_fanout_item(published, entity_id))
            for entity_id in published.entity_ids
        ]
        requests += [
            PutRequest(self._table, keys.source_ref_item(published, source_id))
            for source_id in published.source_ids
        ]
        stale = self._stale_index_keys(published)
        requests += [DeleteRequest(self._table, keys.card_pk(card_id), sk) for sk in stale]

        limit = self._store.max_transaction_items
        if len(requests) > limit:
            raise TransactionLimitError(len(requests), limit)

        try:
            self._store.transact_write(requests)
        except TransactionTooLargeError as exc:
            raise TransactionLimitError(exc.item_count, exc.limit) from exc
        except TransactionCanceledError as exc:
            raise ConflictError(
                f"Card {card_id} changed while publishing version {published.version}"
            ) from exc

        logger.info(
            "Published card %s v%d (%d index rows, %d stale removed, bucket %s)",
            card_id, published.version, len(requests) - 1 - len(stale), len(stale), bucket,
        )
        return published

    def _stale_index_keys(self, published: EvidenceCard) -> list[str]:
        """Sort keys of entity and source-ref rows the new version no longer cites."""
        current = {keys.entity_sk(e) for e in published.entity_ids}
        current |= {keys.source_ref_sk(s) for s in published.source_ids}
        stale = []
        for prefix in (keys.ENTITY_SK_PREFIX, keys.SOURCE_REF_SK_PREFIX):
            result = self._store.query(
                self._table, keys.card_pk(published.card_id), sort_prefix=prefix
            )
            stale += [item["SK"] for item in result.items if item["SK"] not in current]
        return stale

    def _transition(
        self,
        card_id: str,
        to_status: CardStatus,
        actor: str,
        expected_version: int | None,
        extra: dict[str, Any] | None = None,
        allowed_from: frozenset[CardStatus] | None = None,
    ) -> EvidenceCard:
        self._ensure_writable()
        card = self._load_current(card_id, expected_version)
        if allowed_from is not None and card.status not in allowed_from:
            raise InvalidStateTransitionError(card.status.value, to_status.value)
        if not can_transition(card.status, to_status):
            raise InvalidStateTransitionError(card.status.value, to_status.value)
        updated = card.model_copy(
            update={
                **(extra or {}),
                "status": to_status,
                "version": card.version + 1,
                "updated_at": isoformat(self._clock()),
                "updated_by": actor,
            }
        )
        return self._write_version(updated)

    def _annotated_transition(
        self,
        card_id: str,
        to_status: CardStatus,
        kind: str,
        note: str,
        actor: str,
        expected_version: int | None,
    ) -> EvidenceCard:
        self._ensure_writable()
        card = self._load_current(card_id, expected_version)
        if not can_transition(card.status, to_status):
            raise InvalidStateTransitionError(card.status.value, to_status.value)
        now = isoformat(self._clock())
        updated = card.model_copy(
            update={
                "status": to_status,
                "counterpoint": append_annotation(card.counterpoint, kind, now, note),
                "version": card.version + 1,
                "updated_at": now,
                "updated_by": actor,
            }
        )
        return self._write_version(updated)

    # -- Listings -------------------------------------------------------------

    def list_cards(
        self,
        status: CardStatus | None = None,
        category: CardCategory | None = None,
        tag: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[EvidenceCard]:
        """Admin listing over current versions of all cards.

        Filters run after de-duplication to the highest version, otherwise a
        superseded row's old status could match.
        """
        latest: dict[str, dict[str, Any]] = {}
        for item in self._store.scan(self._table, keys.is_version_row):
            seen = latest.get(item["card_id"])
            if seen is None or item["version"] > seen["version"]:
                latest[item["card_id"]] = item

        cards = [EvidenceCard.model_validate(keys.strip_keys(item)) for item in latest.values()]
        if status is not None:
            cards = [c for c in cards if c.status == status]
        if category is not None:
            cards = [c for c in cards if c.category == category]
        if tag is not None:
            cards = [c for c in cards if tag in c.tags]
        cards.sort(key=lambda c: (c.updated_at, c.card_id), reverse=True)

        page_size = self._config.clamp_page_size(limit)
        start = decode_cursor(cursor) or {}
        offset = start.get("offset", 0) if isinstance(start.get("offset"), int) else 0
        window = cards[offset:offset + page_size]
        has_more = offset + page_size < len(cards)
        return Page(
            items=window,
            cursor=encode_cursor({"offset": offset + page_size}) if has_more else None,
            has_more=has_more,
        )

    def list_published(
        self,
        limit: int | None = None,
        cursor: str | None = None,
        bucket: str | None = None,
    ) -> Page[EvidenceCard]:
        """Public feed for one monthly bucket (the current one by default), newest first.

        Older months are reachable only by passing their bucket explicitly.
        """
        result = self._store.query(
            self._table,
            keys.feed_partition(bucket or month_bucket(self._clock())),
            index=keys.FEED_INDEX,
            reverse=True,
            limit=self._config.clamp_page_size(limit),
            start_key=decode_cursor(cursor),
        )
        return self._page(result.items, result.last_key)

    def list_entity_cards(
        self,
        entity_id: str,
        status: CardStatus | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[EvidenceCard]:
        """Cards naming an entity, newest event first.

        The status filter applies to the page after the limit, so a page may
        hold fewer than *limit* items while ``has_more`` is still true.
        """
        result = self._store.query(
            self._table,
            keys.entity_partition(entity_id),
            index=keys.ENTITY_INDEX,
            reverse=True,
            limit=self._config.clamp_page_size(limit),
            start_key=decode_cursor(cursor),
        )
        page = self._page(result.items, result.last_key)
        if status is not None:
            page.items = [c for c in page.items if c.status == status]
        return page

    @staticmethod
    def _page(items: list[dict[str, Any]], last_key: dict[str, Any] | None) -> Page[EvidenceCard]:
        return Page(
            items=[EvidenceCard.model_validate(keys.strip_keys(item)) for item in items],
            cursor=encode_cursor(last_key) if last_key else None,
            has_more=last_key is not None,
        )

    # -- Published references -------------------------------------------------

    def is_referenced_by_published_card(self, source_id: str) -> bool:
        """Whether any published card cites *source_id*.

        Uses the source reverse index by default. With
        ``reference_lookup="bucket_scan"`` it falls back to the bounded feed
        scan, which can miss cards published before the scan window.
        """
        if self._config.reference_lookup == "bucket_scan":
            return self.scan_published_buckets(source_id)
        result = self._store.query(
            self._table,
            keys.source_ref_partition(source_id),
            index=keys.SOURCE_REF_INDEX,
            limit=1,
        )
        return bool(result.items)

    def scan_published_buckets(self, source_id: str, bucket_count: int | None = None) -> bool:
        """Walk the trailing monthly feed buckets looking for a citing card.

        Returns False once the window is exhausted; that is "not found in
        window", not proof that no card ever cited the source.
        """
        count = bucket_count or self._config.published_scan_buckets
        for bucket in previous_month_buckets(self._clock(), count):
            start_key = None
            while True:
                result = self._store.query(
                    self._table,
                    keys.feed_partition(bucket),
                    index=keys.FEED_INDEX,
                    reverse=True,
                    limit=self._config.max_page_size,
                    start_key=start_key,
                )
                if any(source_id in item.get("source_ids", []) for item in result.items):
                    return True
                if result.last_key is None:
                    break
                start_key = result.last_key
        return False

    # -- Internals ------------------------------------------------------------

    def _load_current(self, card_id: str, expected_version: int | None) -> EvidenceCard:
        card = self.get(card_id)
        if expected_version is not None and card.version != expected_version:
            raise ConflictError(
                f"Card {card_id} is at version {card.version}, expected {expected_version}",
                details={"currentVersion": card.version, "expectedVersion": expected_version},
            )
        return card

    def _write_version(self, card: EvidenceCard) -> EvidenceCard:
        try:
            self._store.put(self._table, keys.card_version_item(card), condition=Condition.NOT_EXISTS)
        except ConditionFailedError as exc:
            raise ConflictError(
                f"Card {card.card_id} version {card.version} was written concurrently"
            ) from exc
        return card

    def _ensure_writable(self) -> None:
        if self._config.read_only:
            raise ReadOnlyModeError()
