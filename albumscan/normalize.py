"""Field Extraction Normalizer.

Turns a raw field guess into an ``Extraction``. Nothing in here raises on bad
input: a value that cannot be canonicalised keeps its raw text (the audit
trail needs it) and drops to zero confidence.
"""

import datetime
import re
from typing import Callable, Dict, List, Optional, Tuple

from .models import Extraction, FieldName, PhotoKind

# Separators that OCR and humans use interchangeably inside catalogue numbers
CATNO_SEPARATORS_RE = re.compile(r"[\s\-_./]+")
COUNTRY_PREFIX_RE = re.compile(r"^(made|printed|manufactured|pressed)\s+in\s+", re.I)
YEAR_RE = re.compile(r"(?<!\d)(\d{4})(?!\d)")

FORMAT_VOCABULARY = {
    "vinyl": "vinyl",
    "lp": "vinyl",
    "ep": "vinyl",
    '12"': "vinyl",
    '7"': "vinyl",
    '10"': "vinyl",
    "33 rpm": "vinyl",
    "45 rpm": "vinyl",
    "33 1/3 rpm": "vinyl",
    "record": "vinyl",
    "cd": "cd",
    "compact disc": "cd",
    "compact disc digital audio": "cd",
    "cd album": "cd",
    "cd single": "cd",
}

# Barcodes whose check digit does not verify are kept at reduced confidence
UNVERIFIED_BARCODE_CONFIDENCE = 0.7

# (normalized value or None, confidence cap or None)
Canonical = Tuple[Optional[str], Optional[float]]


def collapse_whitespace(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


def norm_catno(s: Optional[str]) -> Optional[str]:
    """Normalise catalogue number: uppercase, one space between segments."""
    if not s:
        return None
    s = CATNO_SEPARATORS_RE.sub(" ", s.upper()).strip()
    return s or None


def digits_only(s: Optional[str]) -> str:
    return re.sub(r"\D", "", s or "")


def _check_digit_ok(digits: str) -> bool:
    # EAN-13 weights 1,3,1,3...; UPC-A weights 3,1,3,1... from the left
    body, check = digits[:-1], int(digits[-1])
    if len(digits) == 13:
        weights = [1 if i % 2 == 0 else 3 for i in range(12)]
    else:
        weights = [3 if i % 2 == 0 else 1 for i in range(11)]
    total = sum(int(d) * w for d, w in zip(body, weights))
    return (10 - total % 10) % 10 == check


def valid_barcode(digits: str) -> bool:
    """True for an EAN-13 or UPC-A code whose check digit verifies."""
    if len(digits) not in (12, 13) or not digits.isdigit():
        return False
    return _check_digit_ok(digits)


# ---------- FIELD CANONICALISERS ----------
def _free_text(value: str) -> Canonical:
    # All-caps multi-word readings (typical of labels) are title-cased so the
    # same name read off two photos agrees.
    if value.isupper() and " " in value:
        value = value.title()
    return value, None


def _catalog_number(value: str) -> Canonical:
    catno = norm_catno(value)
    if not catno:
        return None, None
    if re.fullmatch(r"\d{12,}", catno.replace(" ", "")):
        return None, None  # barcode read as catalogue number
    return catno, None


def _barcode(value: str) -> Canonical:
    digits = digits_only(value)
    if len(digits) < 8:
        return None, None
    if len(digits) in (12, 13) and not valid_barcode(digits):
        return digits, UNVERIFIED_BARCODE_CONFIDENCE
    return digits, None


def _year(value: str, current_year: int) -> Canonical:
    m = YEAR_RE.search(value)
    if not m:
        return None, None
    year = int(m.group(1))
    if year < 1900 or year > current_year + 1:
        return None, None
    return str(year), None


def _matrix_number(value: str) -> Canonical:
    matrix = value.upper()
    if not re.search(r"[A-Z]", matrix) and len(digits_only(matrix)) >= 12:
        return None, None
    return matrix, None


def _country(value: str) -> Canonical:
    country = COUNTRY_PREFIX_RE.sub("", value).strip(" .,")
    if not country:
        return None, None
    return country.title() if country.isupper() and len(country) > 3 else country, None


def _format(value: str) -> Canonical:
    key = value.lower().replace("”", '"').replace("''", '"')
    if key in FORMAT_VOCABULARY:
        return FORMAT_VOCABULARY[key], None
    for term, fmt in FORMAT_VOCABULARY.items():
        if re.search(rf"(?<![\w\"]){re.escape(term)}(?![\w\"])", key):
            return fmt, None
    return None, None


CANONICALISERS: Dict[FieldName, Callable[[str], Canonical]] = {
    FieldName.ARTIST: _free_text,
    FieldName.TITLE: _free_text,
    FieldName.LABEL: _free_text,
    FieldName.CATALOG_NUMBER: _catalog_number,
    FieldName.BARCODE: _barcode,
    FieldName.MATRIX_NUMBER: _matrix_number,
    FieldName.COUNTRY: _country,
    FieldName.FORMAT: _format,
}


def _clamp_confidence(confidence) -> float:
    try:
        c = float(confidence)
    except (TypeError, ValueError):
        return 0.0
    if c != c:  # NaN
        return 0.0
    return min(1.0, max(0.0, c))


def normalize_guess(
    field: FieldName,
    raw: Optional[str],
    confidence: float,
    source: str,
    photo_kind: PhotoKind = PhotoKind.OTHER,
    current_year: Optional[int] = None,
) -> Extraction:
    """Canonicalise one field guess.

    Args:
        field: Logical field the guess is for.
        raw: Text as read from the photo, or None.
        confidence: Extractor confidence; clamped into [0, 1].
        source: Identifier of the photo / extraction pass.
        photo_kind: Kind of photo the guess came from.
        current_year: Upper bound reference for years (defaults to today).

    Returns:
        An Extraction. Failed parses keep ``raw`` with no normalized value
        and zero confidence.
    """
    if raw is not None and not isinstance(raw, str):
        raw = str(raw)
    conf = _clamp_confidence(confidence)
    cleaned = collapse_whitespace(raw) if raw else ""
    normalized: Optional[str] = None
    if cleaned and conf > 0:
        if field == FieldName.YEAR:
            year_ref = current_year or datetime.date.today().year
            normalized, cap = _year(cleaned, year_ref)
        else:
            normalized, cap = CANONICALISERS[field](cleaned)
        if cap is not None:
            conf = min(conf, cap)
    if normalized is None:
        conf = 0.0
    return Extraction(
        field=field,
        raw=raw,
        normalized=normalized,
        confidence=conf,
        source=source,
        photo_kind=photo_kind,
    )


def reject(extraction: Extraction) -> Extraction:
    """Return a copy with the normalized value dropped and zero confidence."""
    return extraction.model_copy(update={"normalized": None, "confidence": 0.0})


def cross_check(extractions: List[Extraction]) -> Tuple[List[Extraction], List[str]]:
    """Reject catalogue/matrix readings that are really the barcode.

    Works on one photo's extractions. A catalogue number whose digits equal
    the barcode, or a matrix number containing the barcode digits, is a
    misread of the barcode and is dropped.

    Returns:
        (checked extractions in the same order, human-readable notes)
    """
    barcode = next(
        (e.normalized for e in extractions if e.field == FieldName.BARCODE and e.normalized),
        None,
    )
    if not barcode:
        return list(extractions), []
    out: List[Extraction] = []
    notes: List[str] = []
    for e in extractions:
        if e.normalized and e.field == FieldName.CATALOG_NUMBER and digits_only(e.normalized) == barcode:
            notes.append(f"catalog_number {e.raw!r} equals barcode {barcode}; rejected")
            e = reject(e)
        elif e.normalized and e.field == FieldName.MATRIX_NUMBER and barcode in digits_only(e.normalized):
            notes.append(f"matrix_number {e.raw!r} contains barcode {barcode}; rejected")
            e = reject(e)
        out.append(e)
    return out, notes
