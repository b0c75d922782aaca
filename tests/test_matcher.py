from conftest import FakeCatalog, fused_from, release

from albumscan.audit import AuditTrail
from albumscan.errors import CatalogUnavailableError
from albumscan.matcher import CatalogMatcher, build_queries
from albumscan.models import FieldName, QueryKind

FULL = {
    FieldName.BARCODE: ("5099969451526", 0.8),
    FieldName.CATALOG_NUMBER: ("PCS 7088", 0.7),
    FieldName.LABEL: ("Apple", 0.6),
    FieldName.ARTIST: ("The Beatles", 0.9),
    FieldName.TITLE: ("Abbey Road", 0.9),
    FieldName.YEAR: ("1969", 0.7),
}


def test_queries_in_priority_order():
    queries = build_queries(fused_from(FULL))
    assert [q.kind for q in queries] == [
        QueryKind.BARCODE,
        QueryKind.CATALOG_NUMBER_LABEL,
        QueryKind.ARTIST_TITLE_YEAR,
        QueryKind.ARTIST_TITLE,
    ]
    assert queries[1].label == "Apple"
    assert (queries[2].year_from, queries[2].year_to) == (1967, 1971)


def test_first_non_empty_level_wins():
    catalog = FakeCatalog(
        {
            QueryKind.BARCODE: [],
            QueryKind.CATALOG_NUMBER_LABEL: [release(7)],
            QueryKind.ARTIST_TITLE: [release(8)],
        }
    )
    audit = AuditTrail("s")
    attempt = CatalogMatcher(catalog).find(fused_from(FULL), audit)
    assert [r.release_id for r in attempt.releases] == [7]
    assert attempt.query.kind == QueryKind.CATALOG_NUMBER_LABEL
    assert [q.kind for q in catalog.calls] == [QueryKind.BARCODE, QueryKind.CATALOG_NUMBER_LABEL]
    assert audit.steps() == ["catalog_query", "catalog_query"]


def test_failed_level_falls_through_to_next():
    catalog = FakeCatalog(
        {
            QueryKind.BARCODE: CatalogUnavailableError("Discogs error 502"),
            QueryKind.CATALOG_NUMBER_LABEL: [release(3)],
        }
    )
    audit = AuditTrail("s")
    attempt = CatalogMatcher(catalog).find(fused_from(FULL), audit)
    assert [r.release_id for r in attempt.releases] == [3]
    assert attempt.failures == 1
    assert audit.steps()[0] == "catalog_query_failed"
    assert "Discogs error 502" in audit.entries[0].detail


def test_every_level_failing_yields_nothing():
    boom = CatalogUnavailableError("down")
    catalog = FakeCatalog({kind: boom for kind in QueryKind})
    attempt = CatalogMatcher(catalog).find(fused_from(FULL), AuditTrail("s"))
    assert attempt.releases == []
    assert attempt.query is None
    assert attempt.failures == 4
    assert len(catalog.calls) == 4


def test_year_bounded_query_precedes_plain_artist_title():
    fused = fused_from({k: FULL[k] for k in (FieldName.ARTIST, FieldName.TITLE, FieldName.YEAR)})
    catalog = FakeCatalog({QueryKind.ARTIST_TITLE: [release(1)]})
    attempt = CatalogMatcher(catalog).find(fused, AuditTrail("s"))
    assert [q.kind for q in catalog.calls] == [QueryKind.ARTIST_TITLE_YEAR, QueryKind.ARTIST_TITLE]
    assert catalog.calls[0].year_from == 1967
    assert attempt.attempted == [QueryKind.ARTIST_TITLE_YEAR, QueryKind.ARTIST_TITLE]


def test_results_deduplicated_and_capped():
    many = [release(i) for i in range(30)] + [release(0), release(1)]
    catalog = FakeCatalog({QueryKind.BARCODE: many})
    attempt = CatalogMatcher(catalog).find(fused_from(FULL), AuditTrail("s"))
    ids = [r.release_id for r in attempt.releases]
    assert len(ids) == 20
    assert len(set(ids)) == 20
    assert ids[:3] == [0, 1, 2]


def test_no_usable_fields_skips_the_catalog():
    catalog = FakeCatalog()
    audit = AuditTrail("s")
    attempt = CatalogMatcher(catalog).find(fused_from({FieldName.YEAR: ("1969", 0.9)}), audit)
    assert attempt.releases == []
    assert catalog.calls == []
    assert audit.steps() == ["catalog_query_skipped"]


def test_unexpected_catalog_error_falls_through_to_next_level():
    catalog = FakeCatalog(
        {
            QueryKind.BARCODE: TypeError("'NoneType' object is not iterable"),
            QueryKind.CATALOG_NUMBER_LABEL: [release(4)],
        }
    )
    audit = AuditTrail("s")
    attempt = CatalogMatcher(catalog).find(fused_from(FULL), audit)
    assert [r.release_id for r in attempt.releases] == [4]
    assert attempt.failures == 1
    assert audit.steps() == ["catalog_query_failed", "catalog_query"]
    assert "TypeError" in audit.entries[0].detail
