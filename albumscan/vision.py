"""Photo extraction service: one image in, typed field guesses out.

``GoogleVisionExtractor`` asks Google Vision for ``TEXT_DETECTION`` and
``DOCUMENT_TEXT_DETECTION`` on a single photo, merges both into a
de-duplicated list of OCR lines and reads field guesses off those lines with
the same kind of heuristics used for vinyl labels: catalogue numbers are
letter blocks followed by digits, labels end in Records/Recordings/Music,
artists are short all-caps lines, and so on. Each guess carries a fixed
confidence that depends on how reliable that heuristic is on the kind of
photo it was applied to.

The Vision payload never leaves this module untyped: everything returned is
a validated ``FieldGuess``.
"""

import base64
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import requests
from pydantic import ValidationError

from .config import EXTRACTION_TIMEOUT, VISION_ENDPOINT, VISION_KEY
from .errors import ExtractionServiceError
from .models import FieldGuess, FieldName, PhotoKind

logger = logging.getLogger(__name__)


class PhotoExtractor(ABC):
    """Anything that can read field guesses off one photo."""

    @abstractmethod
    def extract(
        self,
        image: bytes,
        fields: Sequence[FieldName],
        kind: PhotoKind = PhotoKind.OTHER,
    ) -> List[FieldGuess]:
        """
        Read the requested fields from one image.

        Raises:
            ExtractionServiceError: the service call failed; no partial
                guesses are assumed.
        """
        ...


# ---------- OCR HEURISTICS ----------

# Pattern to ignore record rim text for title extraction
RIM_PREFIX_RE = re.compile(r"^all rights of the (manufacturer|producer)", re.I)
LAYOUT_WORD_RE = re.compile(r"\b(side|volume|stereo|mono|rpm)\b", re.I)
BARCODE_RE = re.compile(r"(?<![\d])(\d(?:[ \-]?\d){11,12})(?![\d])")
CATNO_LABELLED_RE = re.compile(r"\b(?:cat(?:alog(?:ue)?)?\.?\s*(?:no|number|#)\.?)\s*[:.]?\s*(.+)$", re.I)
CATNO_RE = re.compile(r"\b([A-Z]{2,}\s*-?\s*\d{1,6}(?:[ -]\d{1,4})?)\b")
LABEL_RE = re.compile(r"\b(records|recordings|music|disques|schallplatten)\b", re.I)
YEAR_LINE_RE = re.compile(r"(?:\(p\)|\(c\)|℗|©|copyright|phonographic)\s*(\d{4})", re.I)
COUNTRY_RE = re.compile(r"\b(?:made|printed|manufactured|pressed)\s+in\s+([a-z .]+?)(?:[.,;]|$)", re.I)
CD_RE = re.compile(r"\b(compact\s+disc|digital\s+audio)\b", re.I)
VINYL_RE = re.compile(r"\b(33\s*1/3|45\s*rpm|33\s*rpm|long\s+play(?:ing)?|lp)\b", re.I)

# confidence per (field, photo kind); "*" covers the other kinds
HEURISTIC_CONFIDENCE: Dict[FieldName, Dict[str, float]] = {
    FieldName.BARCODE: {PhotoKind.BARCODE.value: 0.9, PhotoKind.BACK_COVER.value: 0.85, "*": 0.6},
    FieldName.CATALOG_NUMBER: {
        PhotoKind.LABEL.value: 0.75,
        PhotoKind.SPINE.value: 0.7,
        PhotoKind.BACK_COVER.value: 0.65,
        "*": 0.5,
    },
    FieldName.LABEL: {PhotoKind.LABEL.value: 0.7, PhotoKind.BACK_COVER.value: 0.6, "*": 0.45},
    FieldName.ARTIST: {PhotoKind.FRONT_COVER.value: 0.55, PhotoKind.SPINE.value: 0.5, "*": 0.35},
    FieldName.TITLE: {PhotoKind.FRONT_COVER.value: 0.45, PhotoKind.SPINE.value: 0.4, "*": 0.3},
    FieldName.YEAR: {"*": 0.7},
    FieldName.COUNTRY: {"*": 0.8},
    FieldName.MATRIX_NUMBER: {PhotoKind.MATRIX.value: 0.55, "*": 0.0},
    FieldName.FORMAT: {"*": 0.6},
}


def heuristic_confidence(field: FieldName, kind: PhotoKind) -> float:
    table = HEURISTIC_CONFIDENCE[field]
    return table.get(kind.value, table["*"])


def merge_google_ocr(resp: dict) -> List[str]:
    """Merge OCR output from Google Vision TEXT_DETECTION and DOCUMENT_TEXT_DETECTION."""
    lines: List[str] = []
    fta = resp.get("fullTextAnnotation") or {}
    txt = fta.get("text")
    if txt:
        lines.extend([ln.strip() for ln in txt.splitlines() if ln.strip()])
    # The first element of textAnnotations is the full block
    annotations = resp.get("textAnnotations", [])
    if annotations and not txt:
        d = annotations[0].get("description") or ""
        lines.extend([ln.strip() for ln in d.splitlines() if ln.strip()])
    # De-duplicate, preserving order
    out: List[str] = []
    seen = set()
    for ln in lines:
        key = ln.lower()
        if key not in seen:
            seen.add(key)
            out.append(ln)
    return out


def _find_barcode(lines: List[str]) -> Optional[str]:
    for ln in lines:
        m = BARCODE_RE.search(ln)
        if m:
            return m.group(1)
    return None


def _find_catno(lines: List[str], barcode: Optional[str]) -> Optional[str]:
    for ln in lines:
        m = CATNO_LABELLED_RE.search(ln)
        if m and m.group(1).strip():
            return m.group(1).strip()
    for ln in lines:
        up = ln.upper()
        if "VOLUME" in up or (barcode and barcode in ln):
            continue
        m = CATNO_RE.search(up)
        if m:
            return m.group(1)
    return None


def _find_label(lines: List[str]) -> Optional[str]:
    for ln in lines:
        if LABEL_RE.search(ln) and len(ln.split()) <= 5:
            return ln
    return None


def _find_artist(lines: List[str]) -> Optional[str]:
    # Short all-caps line that is not a side marker or volume indicator
    for ln in lines:
        words = ln.split()
        if 1 <= len(words) <= 3 and all(w.isalpha() and w.isupper() for w in words):
            if not LAYOUT_WORD_RE.search(ln):
                return ln
    return None


def _find_title(lines: List[str], taken: List[str]) -> Optional[str]:
    for ln in lines:
        if ln in taken or RIM_PREFIX_RE.match(ln) or LAYOUT_WORD_RE.match(ln):
            continue
        if not re.search(r"[A-Za-z]{2,}", ln):
            continue
        return ln
    return None


def _find_matrix(lines: List[str]) -> Optional[str]:
    best = None
    for ln in lines:
        if re.search(r"[A-Za-z]", ln) and re.search(r"\d", ln) and len(ln) >= 5:
            if best is None or len(ln) > len(best):
                best = ln
    return best


def _search_lines(regex, lines: List[str]) -> Optional[str]:
    for ln in lines:
        m = regex.search(ln)
        if m:
            return m.group(1) if m.groups() else m.group(0)
    return None


def guesses_from_lines(
    lines: List[str],
    fields: Sequence[FieldName],
    kind: PhotoKind = PhotoKind.OTHER,
) -> List[FieldGuess]:
    """Read field guesses off OCR lines; one guess per requested field."""
    clean: List[str] = []
    for ln in lines:
        cleaned = re.sub(r"[^\w\s./:()@&'℗©\-]", "", ln).strip()
        if cleaned:
            clean.append(cleaned)

    barcode = _find_barcode(clean)
    digits = re.sub(r"\D", "", barcode or "")
    catno = _find_catno(clean, barcode)
    label = _find_label(clean)
    artist = _find_artist(clean)
    found: Dict[FieldName, Optional[str]] = {
        FieldName.BARCODE: barcode,
        FieldName.CATALOG_NUMBER: catno if catno and re.sub(r"\D", "", catno) != digits else None,
        FieldName.LABEL: label,
        FieldName.ARTIST: artist,
        FieldName.TITLE: _find_title(clean, [v for v in (artist, label, catno, barcode) if v]),
        FieldName.YEAR: _search_lines(YEAR_LINE_RE, clean),
        FieldName.COUNTRY: _search_lines(COUNTRY_RE, clean),
        FieldName.MATRIX_NUMBER: _find_matrix(clean) if kind == PhotoKind.MATRIX else None,
        FieldName.FORMAT: _search_lines(CD_RE, clean) or _search_lines(VINYL_RE, clean),
    }
    out: List[FieldGuess] = []
    for field in fields:
        value = found.get(field)
        confidence = heuristic_confidence(field, kind) if value else 0.0
        out.append(FieldGuess(field=field, value=value, confidence=confidence))
    return out


# ---------- GOOGLE VISION ----------
class GoogleVisionExtractor(PhotoExtractor):
    def __init__(self, api_key: str = VISION_KEY, timeout: float = EXTRACTION_TIMEOUT, session=None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def call_vision_api(self, image_bytes: bytes) -> dict:
        """Call the Google Vision API for OCR on one image."""
        if not self.api_key:
            raise ExtractionServiceError("GOOGLE_VISION_API_KEY not set")
        b64 = base64.b64encode(image_bytes).decode("utf-8")
        payload = {
            "requests": [
                {
                    "image": {"content": b64},
                    "features": [
                        {"type": "TEXT_DETECTION", "maxResults": 5},
                        {"type": "DOCUMENT_TEXT_DETECTION"},
                    ],
                    "imageContext": {"languageHints": ["en", "nl", "fr", "de", "es"]},
                }
            ]
        }
        try:
            r = self.session.post(
                f"{VISION_ENDPOINT}?key={self.api_key}", json=payload, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise ExtractionServiceError(f"Vision API request failed: {exc}") from exc
        if r.status_code != 200:
            raise ExtractionServiceError(f"Vision API error {r.status_code}: {r.text[:200]}")
        try:
            data = r.json().get("responses", [{}])[0]
        except (ValueError, IndexError) as exc:
            raise ExtractionServiceError("Vision API returned an unreadable payload") from exc
        if "error" in data:
            raise ExtractionServiceError(f"Vision API error: {data['error'].get('message', '')[:200]}")
        return data

    def extract(
        self,
        image: bytes,
        fields: Sequence[FieldName],
        kind: PhotoKind = PhotoKind.OTHER,
    ) -> List[FieldGuess]:
        resp = self.call_vision_api(image)
        lines = merge_google_ocr(resp)
        logger.debug("Vision returned %d OCR lines for %s photo", len(lines), kind.value)
        try:
            return guesses_from_lines(lines, fields, kind)
        except ValidationError as exc:
            raise ExtractionServiceError(f"invalid field guesses: {exc}") from exc
