"""Storage mapping between domain records and store items.

All partition, sort and index keys are derived here from the domain record
(plus, for the public feed, the publish bucket). Nothing in ``ledger.models``
knows about these keys, and ``strip_keys`` removes them again on read.

Card table layout::

    PK=CARD#{id}  SK=V#{version:010d}       one immutable row per version
    PK=CARD#{id}  SK=LATEST                 public feed row      (GSI1)
    PK=CARD#{id}  SK=ENTITY#{entity_id}     entity fan-out row   (GSI2)
    PK=CARD#{id}  SK=SOURCEREF#{source_id}  source reverse index (GSI3)

Source table layout::

    PK=SOURCE#{id}  SK=META
"""

from __future__ import annotations

from typing import Any

from ledger.models import EvidenceCard, Source

KEY_ATTRIBUTES = (
    "PK", "SK",
    "GSI1PK", "GSI1SK",
    "GSI2PK", "GSI2SK",
    "GSI3PK", "GSI3SK",
)

VERSION_PREFIX = "V#"
LATEST_SK = "LATEST"
FEED_INDEX = "GSI1"
ENTITY_INDEX = "GSI2"
SOURCE_REF_INDEX = "GSI3"
ENTITY_SK_PREFIX = "ENTITY#"
SOURCE_REF_SK_PREFIX = "SOURCEREF#"


def strip_keys(item: dict[str, Any]) -> dict[str, Any]:
    """Drop storage key attributes, leaving the domain payload."""
    return {k: v for k, v in item.items() if k not in KEY_ATTRIBUTES}


# -- Sources ------------------------------------------------------------------

def source_pk(source_id: str) -> str:
    return f"SOURCE#{source_id}"


SOURCE_SK = "META"


def source_item(source: Source) -> dict[str, Any]:
    return {
        "PK": source_pk(source.source_id),
        "SK": SOURCE_SK,
        **source.model_dump(mode="json"),
    }


# -- Cards --------------------------------------------------------------------

def card_pk(card_id: str) -> str:
    return f"CARD#{card_id}"


def version_sk(version: int) -> str:
    # Zero-padded so lexical order matches numeric order past v9.
    return f"{VERSION_PREFIX}{version:010d}"


def card_version_item(card: EvidenceCard) -> dict[str, Any]:
    return {
        "PK": card_pk(card.card_id),
        "SK": version_sk(card.version),
        **card.model_dump(mode="json"),
    }


def feed_partition(bucket: str) -> str:
    return f"STATUS#PUBLISHED#{bucket}"


def public_feed_item(card: EvidenceCard, bucket: str) -> dict[str, Any]:
    return {
        "PK": card_pk(card.card_id),
        "SK": LATEST_SK,
        "GSI1PK": feed_partition(bucket),
        "GSI1SK": f"PUBLISH#{card.updated_at}#CARD#{card.card_id}",
        **card.model_dump(mode="json"),
    }


def entity_partition(entity_id: str) -> str:
    return f"ENTITY#{entity_id}"


def entity_sk(entity_id: str) -> str:
    return f"{ENTITY_SK_PREFIX}{entity_id}"


def entity_fanout_item(card: EvidenceCard, entity_id: str) -> dict[str, Any]:
    return {
        "PK": card_pk(card.card_id),
        "SK": entity_sk(entity_id),
        "GSI2PK": entity_partition(entity_id),
        "GSI2SK": f"EVENT#{card.event_date.isoformat()}#CARD#{card.card_id}",
        **card.model_dump(mode="json"),
    }


def source_ref_partition(source_id: str) -> str:
    return f"SOURCE#{source_id}"


def source_ref_sk(source_id: str) -> str:
    return f"{SOURCE_REF_SK_PREFIX}{source_id}"


def source_ref_item(card: EvidenceCard, source_id: str) -> dict[str, Any]:
    return {
        "PK": card_pk(card.card_id),
        "SK": source_ref_sk(source_id),
        "GSI3PK": source_ref_partition(source_id),
        "GSI3SK": f"CARD#{card.card_id}",
        "card_id": card.card_id,
        "source_id": source_id,
        "version": card.version,
        "published_at": card.updated_at,
    }


def is_version_row(item: dict[str, Any]) -> bool:
    return str(item.get("SK", "")).startswith(VERSION_PREFIX)
