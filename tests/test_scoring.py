import pytest
from conftest import fused_from, release

from albumscan.models import FieldName
from albumscan.scoring import canonical_country, score_candidates, score_release, similarity

BARCODE = "4006381333931"


def test_barcode_only_evidence_scores_full_match():
    fused = fused_from({FieldName.BARCODE: (BARCODE, 0.9)})
    c = score_release(fused, release(1, barcodes=["4 006381 333931"]))
    assert c.score == 1.0
    assert c.reasons == ["barcode exact match"]


def test_no_agreement_scores_zero():
    fused = fused_from({FieldName.BARCODE: (BARCODE, 0.9)})
    c = score_release(fused, release(1, barcodes=["0000000000000"]))
    assert c.score == 0.0
    assert c.reasons == []


def test_no_evidence_at_all_scores_zero():
    c = score_release(fused_from({}), release(1))
    assert c.score == 0.0


def test_absent_fields_do_not_penalise():
    fused = fused_from(
        {FieldName.ARTIST: ("The Beatles", 0.7), FieldName.TITLE: ("Abbey Road", 0.7)}
    )
    c = score_release(fused, release(1, artist="The Beatles"))
    assert c.score == 1.0
    assert c.reasons == ["title exact match", "artist exact match"]


def test_weight_scaled_by_fused_confidence():
    fused = fused_from({FieldName.BARCODE: (BARCODE, 0.9), FieldName.TITLE: ("Abbey Road", 0.5)})
    c = score_release(fused, release(1, title="Zzzz Qqqq", barcodes=[BARCODE]))
    expected = (0.30 * 0.9) / (0.30 * 0.9 + 0.09 * 0.5)
    assert c.score == pytest.approx(expected, abs=1e-3)
    assert c.reasons == ["barcode exact match"]


def test_year_decays_linearly():
    fused = fused_from({FieldName.YEAR: ("1969", 1.0)})
    assert score_release(fused, release(1, year=1969)).reasons == ["year exact match"]
    near = score_release(fused, release(1, year=1970))
    assert near.score == pytest.approx(2 / 3, abs=1e-3)
    assert near.reasons == ["year within 1"]
    far = score_release(fused, release(1, year=1972))
    assert far.score == 0.0
    assert far.reasons == []


def test_reasons_ordered_by_weight():
    fused = fused_from(
        {
            FieldName.TITLE: ("Abbey Road", 0.8),
            FieldName.YEAR: ("1969", 0.7),
            FieldName.BARCODE: (BARCODE, 0.9),
        }
    )
    c = score_release(fused, release(1, year=1969, barcodes=[BARCODE]))
    assert c.reasons == ["barcode exact match", "year exact match", "title exact match"]


def test_catalog_number_exact_and_partial():
    fused = fused_from({FieldName.CATALOG_NUMBER: ("PCS 7088", 1.0)})
    assert score_release(fused, release(1, catalog_number="pcs-7088")).score == 1.0
    partial = score_release(fused, release(2, catalog_number="PCS 7088-A"))
    assert partial.score == 0.5
    assert partial.reasons == ["catalog number partial match"]


def test_label_and_country_aliases():
    fused = fused_from({FieldName.LABEL: ("Apple", 0.6), FieldName.COUNTRY: ("Holland", 0.8)})
    c = score_release(fused, release(1, label="Apple Records", country="Netherlands"))
    assert c.score == 1.0
    assert c.reasons == ["label match", "country match"]
    assert canonical_country("England") == canonical_country("UK")


def test_ranking_descending_then_release_id():
    fused = fused_from({FieldName.TITLE: ("Abbey Road", 0.7)})
    releases = [
        release(30),
        release(5, title="Something Else Entirely"),
        release(10),
    ]
    ranked = score_candidates(fused, releases)
    assert [c.release_id for c in ranked] == [10, 30, 5]
    assert ranked[0].score == ranked[1].score == 1.0


def test_rescoring_returns_a_new_list():
    fused = fused_from({FieldName.TITLE: ("Abbey Road", 0.7)})
    releases = [release(1)]
    first = score_candidates(fused, releases)
    second = score_candidates(fused, releases)
    assert first == second
    assert first is not second


def test_similarity_bounds():
    assert similarity("Abbey Road", "abbey road") == 1.0
    assert similarity("Abbey Road", None) == 0.0
    assert 0.0 <= similarity("Abbey Road", "Road Abbey Live") <= 1.0
