"""Catalog Matcher: priority-ordered catalog queries built from fused fields.

Barcodes and catalogue numbers have a much lower false-positive rate than a
free-text artist/title search, so the queries run most-specific first and the
first non-empty result set wins. Queries run one after another; a level is
only tried when every level above it came back empty.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .audit import AuditTrail
from .catalog import ReleaseCatalog
from .config import CANDIDATE_LIMIT, YEAR_WINDOW
from .errors import CatalogUnavailableError
from .fusion import fused_value
from .models import CatalogQuery, FieldName, FusedField, QueryKind, RawRelease

logger = logging.getLogger(__name__)


@dataclass
class MatchAttempt:
    """Outcome of a matcher run."""

    releases: List[RawRelease] = field(default_factory=list)
    query: Optional[CatalogQuery] = None  # the query that produced ``releases``
    attempted: List[QueryKind] = field(default_factory=list)
    failures: int = 0


def build_queries(fused: Dict[FieldName, FusedField]) -> List[CatalogQuery]:
    """Queries in priority order; levels missing their inputs are left out."""
    barcode = fused_value(fused, FieldName.BARCODE)
    catno = fused_value(fused, FieldName.CATALOG_NUMBER)
    label = fused_value(fused, FieldName.LABEL)
    artist = fused_value(fused, FieldName.ARTIST)
    title = fused_value(fused, FieldName.TITLE)
    year = fused_value(fused, FieldName.YEAR)

    queries: List[CatalogQuery] = []
    if barcode:
        queries.append(CatalogQuery(kind=QueryKind.BARCODE, barcode=barcode))
    if catno:
        queries.append(CatalogQuery(kind=QueryKind.CATALOG_NUMBER_LABEL, catalog_number=catno, label=label))
    if artist and title and year:
        y = int(year)
        queries.append(
            CatalogQuery(
                kind=QueryKind.ARTIST_TITLE_YEAR,
                artist=artist,
                title=title,
                year_from=y - YEAR_WINDOW,
                year_to=y + YEAR_WINDOW,
            )
        )
    if artist and title:
        queries.append(CatalogQuery(kind=QueryKind.ARTIST_TITLE, artist=artist, title=title))
    return queries


def dedupe(releases: List[RawRelease], limit: int) -> List[RawRelease]:
    out: List[RawRelease] = []
    seen = set()
    for r in releases:
        if r.release_id in seen:
            continue
        seen.add(r.release_id)
        out.append(r)
        if len(out) >= limit:
            break
    return out


class CatalogMatcher:
    def __init__(self, catalog: ReleaseCatalog, limit: int = CANDIDATE_LIMIT):
        self.catalog = catalog
        self.limit = limit

    def find(self, fused: Dict[FieldName, FusedField], audit: AuditTrail) -> MatchAttempt:
        """Run the queries in order, stopping at the first non-empty result."""
        attempt = MatchAttempt()
        queries = build_queries(fused)
        if not queries:
            audit.record("catalog_query_skipped", "no barcode, catalog number or artist/title observed")
            return attempt

        for query in queries:
            attempt.attempted.append(query.kind)
            try:
                releases = self.catalog.search(query, self.limit)
            except CatalogUnavailableError as exc:
                attempt.failures += 1
                logger.warning("Catalog query %s failed: %s", query.kind.value, exc)
                audit.record("catalog_query_failed", f"{query.describe()} -> {exc}")
                continue
            except Exception as exc:
                attempt.failures += 1
                logger.exception("Unexpected catalog error for %s", query.kind.value)
                audit.record("catalog_query_failed", f"{query.describe()} -> {type(exc).__name__}: {exc}")
                continue
            releases = dedupe(releases, self.limit)
            audit.record("catalog_query", f"{query.describe()} -> {len(releases)} results")
            if releases:
                attempt.releases = releases
                attempt.query = query
                break
        return attempt
