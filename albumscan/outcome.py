"""Outcome Classifier.

Maps the ranked candidate list and the fused evidence onto one of the four
match statuses. ``classify_outcome`` is a pure function: the same candidates
and fused fields always give the same outcome.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import (
    HIGH_CONFIDENCE,
    MATCH_FLOOR,
    MEDIUM_CONFIDENCE,
    MIN_MARGIN,
    USABILITY_FLOOR,
)
from .fusion import fused_confidence, fused_value
from .models import (
    Candidate,
    FieldName,
    FusedField,
    MatchStatus,
    PhotoGuidance,
    PhotoKind,
)

logger = logging.getLogger(__name__)

# Fields without which more photos could still help
REQUIRED_FIELDS = [FieldName.ARTIST, FieldName.TITLE]
IDENTIFIER_FIELDS = [FieldName.CATALOG_NUMBER, FieldName.BARCODE]

# field -> (photo kind to take, instruction); "cd" overrides the default
PHOTO_GUIDANCE: Dict[FieldName, Dict[str, Tuple[PhotoKind, str]]] = {
    FieldName.ARTIST: {
        "default": (PhotoKind.FRONT_COVER, "Photograph the front cover straight on, without glare."),
    },
    FieldName.TITLE: {
        "default": (PhotoKind.FRONT_COVER, "Photograph the front cover straight on, without glare."),
    },
    FieldName.CATALOG_NUMBER: {
        "default": (PhotoKind.LABEL, "Photograph the label or runout groove area."),
        "cd": (PhotoKind.SPINE, "Photograph the spine or back cover where the catalog number is printed."),
    },
    FieldName.BARCODE: {
        "default": (PhotoKind.BACK_COVER, "Photograph the back cover barcode area."),
    },
}


@dataclass(frozen=True)
class Outcome:
    status: MatchStatus
    overall_confidence: float
    matched_release_id: Optional[int] = None
    missing_fields: List[FieldName] = field(default_factory=list)
    photo_guidance: List[PhotoGuidance] = field(default_factory=list)


def unobserved_required(fused: Dict[FieldName, FusedField]) -> bool:
    """True when a required field (or both identifiers) was never observed."""
    if any(fused_confidence(fused, f) <= 0 for f in REQUIRED_FIELDS):
        return True
    return all(fused_confidence(fused, f) <= 0 for f in IDENTIFIER_FIELDS)


def missing_fields(fused: Dict[FieldName, FusedField]) -> List[FieldName]:
    """Required fields whose fused confidence is too low to use."""
    out = [f for f in REQUIRED_FIELDS if fused_confidence(fused, f) < USABILITY_FLOOR]
    if all(fused_confidence(fused, f) < USABILITY_FLOOR for f in IDENTIFIER_FIELDS):
        out.extend(IDENTIFIER_FIELDS)
    return out


def photo_guidance(fields: List[FieldName], media: Optional[str] = None) -> List[PhotoGuidance]:
    out: List[PhotoGuidance] = []
    for f in fields:
        table = PHOTO_GUIDANCE[f]
        kind, instruction = table.get(media or "default", table["default"])
        out.append(PhotoGuidance(field=f, photo_kind=kind, instruction=instruction))
    return out


def _text_confidence(fused: Dict[FieldName, FusedField]) -> float:
    return (fused_confidence(fused, FieldName.ARTIST) + fused_confidence(fused, FieldName.TITLE)) / 2


def _status(candidates: List[Candidate], fused: Dict[FieldName, FusedField]) -> MatchStatus:
    top = candidates[0].score if candidates else 0.0
    second = candidates[1].score if len(candidates) > 1 else None

    if candidates and top >= HIGH_CONFIDENCE:
        gap = top - second if second is not None else top
        if round(gap, 6) >= MIN_MARGIN:
            return MatchStatus.SINGLE_MATCH
    if sum(1 for c in candidates if c.score >= MEDIUM_CONFIDENCE) >= 2:
        return MatchStatus.MULTIPLE_CANDIDATES
    if candidates and top <= MATCH_FLOOR:
        return MatchStatus.NO_MATCH
    if top < MEDIUM_CONFIDENCE and unobserved_required(fused):
        return MatchStatus.NEEDS_MORE_PHOTOS
    if not candidates:
        return MatchStatus.NO_MATCH
    # Plausible but not dominant: let the caller confirm
    return MatchStatus.MULTIPLE_CANDIDATES


def classify_outcome(candidates: List[Candidate], fused: Dict[FieldName, FusedField]) -> Outcome:
    """
    Classify a scored, ranked candidate list.

    Args:
        candidates: Output of ``score_candidates`` (sorted best first)
        fused: One FusedField per logical field

    Returns:
        Outcome with status, overall confidence, and next-photo guidance
    """
    status = _status(candidates, fused)
    if status == MatchStatus.SINGLE_MATCH:
        return Outcome(
            status=status,
            overall_confidence=candidates[0].score,
            matched_release_id=candidates[0].release_id,
        )

    if status == MatchStatus.MULTIPLE_CANDIDATES:
        confidence = candidates[0].score
    else:
        confidence = _text_confidence(fused)
    missing = missing_fields(fused)
    return Outcome(
        status=status,
        overall_confidence=confidence,
        missing_fields=missing,
        photo_guidance=photo_guidance(missing, fused_value(fused, FieldName.FORMAT)),
    )
