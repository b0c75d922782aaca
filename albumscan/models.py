"""Data model shared by every pipeline stage.

Field names on ``PipelineResult`` (and the nested ``Candidate``,
``Extraction``, ``PhotoGuidance`` and ``AuditEntry``) are the contract with
the UI layer. Renaming any of them needs a version bump.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------- ENUMS ----------
class FieldName(str, Enum):
    ARTIST = "artist"
    TITLE = "title"
    LABEL = "label"
    CATALOG_NUMBER = "catalog_number"
    BARCODE = "barcode"
    COUNTRY = "country"
    YEAR = "year"
    MATRIX_NUMBER = "matrix_number"
    FORMAT = "format"


ALL_FIELDS: List[FieldName] = list(FieldName)


class PhotoKind(str, Enum):
    FRONT_COVER = "front_cover"
    BACK_COVER = "back_cover"
    LABEL = "label"
    MATRIX = "matrix"  # runout groove / CD mirror band
    BARCODE = "barcode"
    SPINE = "spine"
    OTHER = "other"


# Kinds assumed for untagged photos, by position.
DEFAULT_PHOTO_ORDER = [PhotoKind.FRONT_COVER, PhotoKind.BACK_COVER, PhotoKind.LABEL]


class MatchStatus(str, Enum):
    SINGLE_MATCH = "single_match"
    MULTIPLE_CANDIDATES = "multiple_candidates"
    NEEDS_MORE_PHOTOS = "needs_more_photos"
    NO_MATCH = "no_match"


class QueryKind(str, Enum):
    BARCODE = "barcode"
    CATALOG_NUMBER_LABEL = "catalog_number_label"
    ARTIST_TITLE_YEAR = "artist_title_year"
    ARTIST_TITLE = "artist_title"


# ---------- INPUT ----------
class Photo(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: bytes
    kind: PhotoKind = PhotoKind.OTHER
    filename: Optional[str] = None


class FieldGuess(BaseModel):
    """One field reading returned by a photo extraction service."""

    field: FieldName
    value: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)


# ---------- PIPELINE RECORDS ----------
class Extraction(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: FieldName
    raw: Optional[str] = None
    normalized: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    source: str
    photo_kind: PhotoKind = PhotoKind.OTHER

    @model_validator(mode="after")
    def _check_presence(self) -> "Extraction":
        if self.normalized is not None and self.raw is None:
            raise ValueError("normalized value without a raw value")
        if self.confidence == 0 and self.normalized is not None:
            raise ValueError("zero-confidence extraction cannot carry a value")
        return self


class FusedField(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: FieldName
    value: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    sources: List[str] = Field(default_factory=list)


class RawRelease(BaseModel):
    """A release record as returned by a catalog search."""

    release_id: int
    title: str = ""
    artist: Optional[str] = None
    year: Optional[int] = None
    country: Optional[str] = None
    label: Optional[str] = None
    catalog_number: Optional[str] = None
    barcodes: List[str] = Field(default_factory=list)
    format: Optional[str] = None
    url: Optional[str] = None


class CatalogQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: QueryKind
    barcode: Optional[str] = None
    catalog_number: Optional[str] = None
    label: Optional[str] = None
    artist: Optional[str] = None
    title: Optional[str] = None
    year_from: Optional[int] = None
    year_to: Optional[int] = None

    def describe(self) -> str:
        parts = []
        for name in ("barcode", "catalog_number", "label", "artist", "title"):
            value = getattr(self, name)
            if value:
                parts.append(f"{name}={value!r}")
        if self.year_from is not None and self.year_to is not None:
            parts.append(f"year={self.year_from}-{self.year_to}")
        return f"{self.kind.value}: " + ", ".join(parts)


class Candidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    release_id: int
    title: str
    year: Optional[int] = None
    country: Optional[str] = None
    score: float = Field(0.0, ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)


class PhotoGuidance(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: FieldName
    photo_kind: PhotoKind
    instruction: str


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: str
    detail: str
    timestamp: str


# ---------- OUTPUT ----------
class PipelineResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    artist: Optional[str] = None
    title: Optional[str] = None
    match_status: MatchStatus
    matched_release_id: Optional[int] = None
    matched_release_url: Optional[str] = None
    overall_confidence: float = Field(0.0, ge=0.0, le=1.0)
    candidates: List[Candidate] = Field(default_factory=list)
    extractions: List[Extraction] = Field(default_factory=list)
    missing_fields: List[FieldName] = Field(default_factory=list)
    photo_guidance: List[PhotoGuidance] = Field(default_factory=list)
    audit: List[AuditEntry] = Field(default_factory=list)
