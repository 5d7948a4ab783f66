"""Pydantic v2 domain records for sources, evidence cards and manifests.

These are pure domain types. Storage keys (partition/sort/index keys) are
derived by ``ledger.storage.keys`` and never appear on these models.
"""

from __future__ import annotations

import json
from datetime import date
from enum import Enum

from pydantic import BaseModel, Field, HttpUrl, field_validator


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


class CardStatus(str, Enum):
    """Evidence card lifecycle status."""
    DRAFT = "DRAFT"
    REVIEW = "REVIEW"
    PUBLISHED = "PUBLISHED"
    DISPUTED = "DISPUTED"
    CORRECTED = "CORRECTED"
    RETRACTED = "RETRACTED"
    ARCHIVED = "ARCHIVED"


class EvidenceStrength(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class CardCategory(str, Enum):
    """Category of misconduct a card documents."""
    labor = "labor"
    consumer = "consumer"
    environment = "environment"
    procurement = "procurement"
    privacy = "privacy"
    lobbying = "lobbying"
    fraud = "fraud"
    governance = "governance"
    other = "other"


class DocType(str, Enum):
    PDF = "PDF"
    HTML = "HTML"
    IMAGE = "IMAGE"
    OTHER = "OTHER"


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class SourceInput(BaseModel):
    title: str = Field(..., min_length=1, max_length=1000)
    publisher: str = Field(..., min_length=1, max_length=500)
    url: HttpUrl
    doc_type: DocType
    excerpt: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=5000)


class SourcePatch(BaseModel):
    """Metadata-only source edit. Verification fields are not patchable."""

    title: str | None = Field(default=None, min_length=1, max_length=1000)
    publisher: str | None = Field(default=None, min_length=1, max_length=500)
    url: HttpUrl | None = None
    doc_type: DocType | None = None
    excerpt: str | None = Field(default=None, max_length=2000)
    notes: str | None = Field(default=None, max_length=5000)


class Source(BaseModel):
    """A public record or document backing one or more cards."""

    source_id: str
    title: str
    publisher: str
    url: str
    retrieved_at: str
    doc_type: DocType
    verification_status: VerificationStatus = VerificationStatus.PENDING
    sha256: str | None = None
    byte_length: int | None = None
    mime_type: str | None = None
    storage_key: str | None = None
    manifest_key: str | None = None
    signature: str | None = None
    signing_key_id: str | None = None
    signing_algorithm: str | None = None
    verified_at: str | None = None
    excerpt: str | None = None
    notes: str | None = None
    created_at: str
    updated_at: str
    created_by: str
    updated_by: str

    @property
    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED


class VerificationManifest(BaseModel):
    """The exact payload that is signed for a verified source.

    ``to_bytes`` is the only serialization ever signed or stored, so a
    signature verifies against exactly these bytes.
    """

    source_id: str
    storage_key: str
    sha256: str
    byte_length: int
    mime_type: str
    retrieved_at: str
    publisher: str
    url: str
    verified_at: str
    algorithm: str
    signing_key_id: str

    def to_bytes(self) -> bytes:
        return json.dumps(
            self.model_dump(mode="json"),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "VerificationManifest":
        return cls.model_validate(json.loads(raw.decode("utf-8")))


class UploadTarget(BaseModel):
    upload_url: str
    storage_key: str
    expires_at: str


class DownloadLink(BaseModel):
    download_url: str
    expires_at: str
    filename: str


class VerificationInfo(BaseModel):
    """Public verification metadata for independent re-verification."""

    source_id: str
    verification_status: VerificationStatus
    verified_at: str | None = None
    sha256: str | None = None
    byte_length: int | None = None
    mime_type: str | None = None
    manifest_url: str | None = None
    signature: str | None = None
    key_id: str | None = None
    algorithm: str | None = None


class PublicKey(BaseModel):
    public_key: str
    key_id: str
    algorithm: str


# ---------------------------------------------------------------------------
# Evidence cards
# ---------------------------------------------------------------------------

class ScoreSignals(BaseModel):
    """Transparent scoring signals, 0-5 each."""

    severity: float = Field(..., ge=0, le=5)
    intent: float = Field(..., ge=0, le=5)
    scope: float = Field(..., ge=0, le=5)
    recidivism: float = Field(..., ge=0, le=5)
    deception: float = Field(..., ge=0, le=5)
    accountability: float = Field(..., ge=0, le=5)


class CardInput(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    claim: str = Field(..., min_length=1, max_length=1000)
    summary: str = Field(..., min_length=1, max_length=5000)
    category: CardCategory
    entity_ids: list[str] = Field(..., min_length=1, max_length=20)
    event_date: date
    jurisdiction: str | None = Field(default=None, max_length=100)
    source_ids: list[str] = Field(default_factory=list, max_length=50)
    evidence_strength: EvidenceStrength
    counterpoint: str | None = Field(default=None, max_length=5000)
    tags: list[str] = Field(default_factory=list, max_length=20)
    score_signals: ScoreSignals | None = None

    @field_validator("entity_ids", "source_ids")
    @classmethod
    def dedupe_ids(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


class CardPatch(BaseModel):
    """Partial card edit. Only fields explicitly set are applied."""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    claim: str | None = Field(default=None, min_length=1, max_length=1000)
    summary: str | None = Field(default=None, min_length=1, max_length=5000)
    category: CardCategory | None = None
    entity_ids: list[str] | None = Field(default=None, min_length=1, max_length=20)
    event_date: date | None = None
    jurisdiction: str | None = Field(default=None, max_length=100)
    source_ids: list[str] | None = Field(default=None, max_length=50)
    evidence_strength: EvidenceStrength | None = None
    counterpoint: str | None = Field(default=None, max_length=5000)
    tags: list[str] | None = Field(default=None, max_length=20)
    score_signals: ScoreSignals | None = None

    @field_validator("entity_ids", "source_ids")
    @classmethod
    def dedupe_ids(cls, v: list[str] | None) -> list[str] | None:
        return list(dict.fromkeys(v)) if v is not None else None


class EvidenceCard(BaseModel):
    """The atomic published claim record. One instance per version."""

    card_id: str
    title: str
    claim: str
    summary: str
    category: CardCategory
    entity_ids: list[str] = Field(..., min_length=1, max_length=20)
    event_date: date
    publish_date: date | None = None
    jurisdiction: str | None = None
    source_ids: list[str] = Field(default_factory=list, max_length=50)
    evidence_strength: EvidenceStrength
    status: CardStatus = CardStatus.DRAFT
    counterpoint: str | None = None
    tags: list[str] = Field(default_factory=list)
    score_signals: ScoreSignals | None = None
    version: int = Field(default=1, ge=1)
    created_at: str
    updated_at: str
    created_by: str
    updated_by: str
