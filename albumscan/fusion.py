"""Evidence Fuser: one best value per logical field across all photos."""

import logging
from typing import Dict, List

from .config import FUSION_CAP
from .models import Extraction, FieldName, FusedField, PhotoKind

logger = logging.getLogger(__name__)

# Most authoritative photo kind first. Kinds not listed rank after all listed
# ones, in PhotoKind declaration order.
PHOTO_PRECEDENCE: Dict[FieldName, List[PhotoKind]] = {
    FieldName.ARTIST: [PhotoKind.FRONT_COVER, PhotoKind.SPINE, PhotoKind.LABEL, PhotoKind.BACK_COVER],
    FieldName.TITLE: [PhotoKind.FRONT_COVER, PhotoKind.SPINE, PhotoKind.LABEL, PhotoKind.BACK_COVER],
    FieldName.LABEL: [PhotoKind.LABEL, PhotoKind.BACK_COVER, PhotoKind.SPINE, PhotoKind.FRONT_COVER],
    FieldName.CATALOG_NUMBER: [
        PhotoKind.LABEL,
        PhotoKind.MATRIX,
        PhotoKind.SPINE,
        PhotoKind.BACK_COVER,
        PhotoKind.FRONT_COVER,
    ],
    FieldName.MATRIX_NUMBER: [PhotoKind.MATRIX, PhotoKind.LABEL],
    FieldName.BARCODE: [PhotoKind.BARCODE, PhotoKind.BACK_COVER],
    FieldName.COUNTRY: [PhotoKind.BACK_COVER, PhotoKind.LABEL, PhotoKind.BARCODE],
    FieldName.YEAR: [PhotoKind.BACK_COVER, PhotoKind.LABEL],
    FieldName.FORMAT: [PhotoKind.FRONT_COVER, PhotoKind.BACK_COVER, PhotoKind.LABEL],
}

_KIND_ORDER = list(PhotoKind)


def precedence_rank(field: FieldName, kind: PhotoKind) -> int:
    """Lower is more authoritative."""
    table = PHOTO_PRECEDENCE[field]
    if kind in table:
        return table.index(kind)
    return len(table) + _KIND_ORDER.index(kind)


def combine_confidences(confidences: List[float]) -> float:
    """Independent-evidence combination ``1 - prod(1 - c)``, capped."""
    remaining = 1.0
    for c in confidences:
        remaining *= 1.0 - c
    return min(FUSION_CAP, 1.0 - remaining)


class _Group:
    __slots__ = ("key", "members", "first_seen")

    def __init__(self, key: str, first_seen: int):
        self.key = key
        self.members: List[Extraction] = []
        self.first_seen = first_seen

    def confidence(self) -> float:
        if len(self.members) == 1:
            return self.members[0].confidence
        return combine_confidences([m.confidence for m in self.members])

    def best_rank(self, field: FieldName) -> int:
        return min(precedence_rank(field, m.photo_kind) for m in self.members)

    def representative(self, field: FieldName) -> Extraction:
        # Display form comes from the strongest, most authoritative reading
        return min(
            self.members,
            key=lambda m: (-m.confidence, precedence_rank(field, m.photo_kind)),
        )


def fuse_field(field: FieldName, extractions: List[Extraction]) -> FusedField:
    groups: Dict[str, _Group] = {}
    for e in extractions:
        if e.field != field or e.confidence <= 0 or not e.normalized:
            continue
        key = e.normalized.casefold()
        if key not in groups:
            groups[key] = _Group(key, len(groups))
        groups[key].members.append(e)

    if not groups:
        return FusedField(field=field)

    winner = min(
        groups.values(),
        key=lambda g: (-g.confidence(), g.best_rank(field), g.first_seen),
    )
    if len(groups) > 1:
        logger.debug(
            "%s: %d conflicting values, kept %r", field.value, len(groups), winner.key
        )
    return FusedField(
        field=field,
        value=winner.representative(field).normalized,
        confidence=winner.confidence(),
        sources=[m.source for m in winner.members],
    )


def fuse(extractions: List[Extraction]) -> Dict[FieldName, FusedField]:
    """Fuse every logical field; all fields are present in the result."""
    return {field: fuse_field(field, extractions) for field in FieldName}


def fused_value(fused: Dict[FieldName, FusedField], field: FieldName):
    """Value of a fused field if it was observed at all, else None."""
    f = fused.get(field)
    if f is None or f.confidence <= 0:
        return None
    return f.value


def fused_confidence(fused: Dict[FieldName, FusedField], field: FieldName) -> float:
    f = fused.get(field)
    return f.confidence if f is not None else 0.0
