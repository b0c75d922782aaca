"""
Candidate Scorer.

Each candidate release is compared to the fused evidence field by field.
Every comparison yields an agreement signal in [0, 1]; signals are combined
with fixed weights (``config.SCORE_WEIGHTS``) scaled by how confident the
fused evidence for that field is. The sum is divided by the largest value it
could have reached with the evidence that was actually observed, so a
candidate is never penalised for a field nobody could read.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from rapidfuzz import fuzz

from .config import SCORE_WEIGHTS, SIMILARITY_FLOOR, YEAR_DECAY_YEARS
from .fusion import fused_confidence, fused_value
from .models import Candidate, FieldName, FusedField, RawRelease
from .normalize import digits_only, norm_catno

COUNTRY_ALIASES: Dict[str, List[str]] = {
    "netherlands": ["netherlands", "the netherlands", "holland", "nl"],
    "germany": ["germany", "deutschland", "west germany", "de"],
    "uk": ["uk", "united kingdom", "england", "great britain", "gb"],
    "europe": ["europe", "eu"],
    "usa": ["us", "usa", "united states", "united states of america"],
    "japan": ["japan", "jp"],
    "france": ["france", "fr"],
}


@dataclass(frozen=True)
class Signal:
    """One field comparison: agreement in [0, 1] plus a short explanation."""

    value: float
    reason: str = ""


NO_SIGNAL = Signal(0.0)


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """Order-insensitive string similarity in [0, 1]."""
    if not a or not b:
        return 0.0
    return fuzz.token_sort_ratio(a.casefold(), b.casefold()) / 100.0


def canonical_country(name: str) -> str:
    low = name.casefold().strip()
    for canonical, aliases in COUNTRY_ALIASES.items():
        if low in aliases:
            return canonical
    return low


# ---------- SIGNALS ----------
def barcode_signal(value: str, release: RawRelease) -> Signal:
    if any(digits_only(b) == value for b in release.barcodes):
        return Signal(1.0, "barcode exact match")
    return NO_SIGNAL


def catalog_number_signal(value: str, release: RawRelease) -> Signal:
    theirs = norm_catno(release.catalog_number)
    if not theirs:
        return NO_SIGNAL
    if theirs == value:
        return Signal(1.0, "catalog number exact match")
    ours_compact, theirs_compact = value.replace(" ", ""), theirs.replace(" ", "")
    if ours_compact == theirs_compact:
        return Signal(1.0, "catalog number exact match")
    if ours_compact in theirs_compact or theirs_compact in ours_compact:
        return Signal(0.5, "catalog number partial match")
    return NO_SIGNAL


def label_signal(value: str, release: RawRelease) -> Signal:
    if not release.label:
        return NO_SIGNAL
    ours, theirs = value.casefold().strip(), release.label.casefold().strip()
    if ours in theirs or theirs in ours:
        return Signal(1.0, "label match")
    return NO_SIGNAL


def year_signal(value: str, release: RawRelease) -> Signal:
    if release.year is None:
        return NO_SIGNAL
    delta = abs(int(value) - release.year)
    agreement = max(0.0, 1.0 - delta / YEAR_DECAY_YEARS)
    if agreement <= 0:
        return NO_SIGNAL
    return Signal(agreement, "year exact match" if delta == 0 else f"year within {delta}")


def _text_signal(name: str, ours: str, theirs: Optional[str]) -> Signal:
    s = similarity(ours, theirs)
    if s < SIMILARITY_FLOOR:
        return NO_SIGNAL
    if s >= 1.0:
        return Signal(1.0, f"{name} exact match")
    return Signal(s, f"{name} similarity {s:.2f}")


def title_signal(value: str, release: RawRelease) -> Signal:
    return _text_signal("title", value, release.title)


def artist_signal(value: str, release: RawRelease) -> Signal:
    return _text_signal("artist", value, release.artist)


def country_signal(value: str, release: RawRelease) -> Signal:
    if not release.country:
        return NO_SIGNAL
    if canonical_country(value) == canonical_country(release.country):
        return Signal(1.0, "country match")
    return NO_SIGNAL


SIGNALS: Dict[str, Callable[[str, RawRelease], Signal]] = {
    "barcode": barcode_signal,
    "catalog_number": catalog_number_signal,
    "label": label_signal,
    "year": year_signal,
    "title": title_signal,
    "artist": artist_signal,
    "country": country_signal,
}


def available_weights(fused: Dict[FieldName, FusedField]) -> Dict[str, float]:
    """Effective weight per observed field (weight x fused confidence)."""
    out: Dict[str, float] = {}
    for name, weight in SCORE_WEIGHTS.items():
        field = FieldName(name)
        if fused_value(fused, field) is not None:
            out[name] = weight * fused_confidence(fused, field)
    return out


def score_release(fused: Dict[FieldName, FusedField], release: RawRelease) -> Candidate:
    """Score one release against the fused evidence."""
    weights = available_weights(fused)
    max_achievable = sum(weights.values())
    total = 0.0
    reasons: List[str] = []
    for name, weight in weights.items():
        signal = SIGNALS[name](fused_value(fused, FieldName(name)), release)
        if signal.value > 0:
            total += weight * signal.value
            reasons.append(signal.reason)
    score = round(min(1.0, total / max_achievable), 4) if max_achievable > 0 else 0.0
    return Candidate(
        release_id=release.release_id,
        title=release.title,
        year=release.year,
        country=release.country,
        score=score,
        reasons=reasons,
    )


def rank(candidates: List[Candidate]) -> List[Candidate]:
    """Score descending, ties broken by release_id ascending."""
    return sorted(candidates, key=lambda c: (-c.score, c.release_id))


def score_candidates(fused: Dict[FieldName, FusedField], releases: List[RawRelease]) -> List[Candidate]:
    """Score and rank every release; always returns a new list."""
    return rank([score_release(fused, r) for r in releases])
