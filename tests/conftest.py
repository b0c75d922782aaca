import io
import threading
from typing import Dict, List, Optional, Sequence, Union

import pytest
from PIL import Image

from albumscan.catalog import ReleaseCatalog
from albumscan.errors import ExtractionServiceError
from albumscan.models import (
    CatalogQuery,
    Extraction,
    FieldGuess,
    FieldName,
    FusedField,
    PhotoKind,
    QueryKind,
    RawRelease,
)
from albumscan.vision import PhotoExtractor


def make_png(color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png():
    return make_png()


@pytest.fixture
def photos():
    return [make_png((255, 0, 0)), make_png((0, 255, 0)), make_png((0, 0, 255))]


class FakeExtractor(PhotoExtractor):
    """Returns canned guesses per photo kind."""

    def __init__(
        self,
        by_kind: Optional[Dict[PhotoKind, List[FieldGuess]]] = None,
        fail_kinds: Sequence[PhotoKind] = (),
        hang_kinds: Sequence[PhotoKind] = (),
    ):
        self.by_kind = by_kind or {}
        self.fail_kinds = set(fail_kinds)
        self.hang_kinds = set(hang_kinds)
        self.release = threading.Event()
        self.calls: List[PhotoKind] = []

    def extract(self, image, fields, kind=PhotoKind.OTHER):
        self.calls.append(kind)
        if kind in self.hang_kinds:
            self.release.wait(5)
        if kind in self.fail_kinds:
            raise ExtractionServiceError("Vision API error 503: unavailable")
        return [g for g in self.by_kind.get(kind, []) if g.field in fields]


class FakeCatalog(ReleaseCatalog):
    """Answers per query kind; an exception instance is raised instead."""

    def __init__(self, responses: Optional[Dict[QueryKind, Union[List[RawRelease], Exception]]] = None):
        self.responses = responses or {}
        self.calls: List[CatalogQuery] = []

    def search(self, query, limit):
        self.calls.append(query)
        resp = self.responses.get(query.kind, [])
        if isinstance(resp, Exception):
            raise resp
        return list(resp)


def guess(field: FieldName, value: Optional[str], confidence: float) -> FieldGuess:
    return FieldGuess(field=field, value=value, confidence=confidence)


def extraction(field, value, confidence, kind=PhotoKind.OTHER, index=1) -> Extraction:
    return Extraction(
        field=field,
        raw=value,
        normalized=value if confidence > 0 else None,
        confidence=confidence,
        source=f"photo-{index}:{kind.value}",
        photo_kind=kind,
    )


def fused_from(values: Dict[FieldName, tuple]) -> Dict[FieldName, FusedField]:
    """{field: (value, confidence)} -> a complete fused-field mapping."""
    out = {}
    for f in FieldName:
        if f in values:
            value, conf = values[f]
            out[f] = FusedField(field=f, value=value, confidence=conf, sources=["photo-1:other"])
        else:
            out[f] = FusedField(field=f)
    return out


def release(release_id, title="Abbey Road", **kwargs) -> RawRelease:
    return RawRelease(release_id=release_id, title=title, **kwargs)
