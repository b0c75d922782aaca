from unittest.mock import MagicMock

import pytest
import requests

from albumscan.errors import ExtractionServiceError
from albumscan.models import ALL_FIELDS, FieldName, PhotoKind
from albumscan.vision import GoogleVisionExtractor, guesses_from_lines, merge_google_ocr

BACK_COVER_LINES = [
    "THE BEATLES",
    "ABBEY ROAD",
    "Apple Records",
    "PCS 7088",
    "(P) 1969",
    "Made in England",
    "5 099969 451526",
]


def as_dict(guesses):
    return {g.field: g for g in guesses}


def test_back_cover_heuristics():
    found = as_dict(guesses_from_lines(BACK_COVER_LINES, ALL_FIELDS, PhotoKind.BACK_COVER))
    assert len(found) == len(ALL_FIELDS)
    assert found[FieldName.ARTIST].value == "THE BEATLES"
    assert found[FieldName.TITLE].value == "ABBEY ROAD"
    assert found[FieldName.LABEL].value == "Apple Records"
    assert found[FieldName.CATALOG_NUMBER].value == "PCS 7088"
    assert found[FieldName.YEAR].value == "1969"
    assert found[FieldName.COUNTRY].value == "England"
    assert found[FieldName.BARCODE].value == "5 099969 451526"
    assert found[FieldName.BARCODE].confidence == 0.85
    assert found[FieldName.CATALOG_NUMBER].confidence == 0.65
    # matrix numbers are only read off runout/mirror band photos
    assert found[FieldName.MATRIX_NUMBER].value is None
    assert found[FieldName.MATRIX_NUMBER].confidence == 0.0
    assert found[FieldName.FORMAT].confidence == 0.0


def test_only_requested_fields_returned():
    guesses = guesses_from_lines(BACK_COVER_LINES, [FieldName.BARCODE], PhotoKind.BARCODE)
    assert [g.field for g in guesses] == [FieldName.BARCODE]
    assert guesses[0].confidence == 0.9


def test_labelled_catalog_number_and_format():
    found = as_dict(
        guesses_from_lines(["Cat. No. CDP 7 46446 2", "Compact Disc Digital Audio"], ALL_FIELDS, PhotoKind.SPINE)
    )
    assert found[FieldName.CATALOG_NUMBER].value == "CDP 7 46446 2"
    assert found[FieldName.FORMAT].value.lower() == "compact disc"


def test_merge_google_ocr_dedupes_lines():
    resp = {"fullTextAnnotation": {"text": "ABBEY ROAD\nabbey road\n\nApple Records\n"}}
    assert merge_google_ocr(resp) == ["ABBEY ROAD", "Apple Records"]
    fallback = {"textAnnotations": [{"description": "PCS 7088\nStereo"}]}
    assert merge_google_ocr(fallback) == ["PCS 7088", "Stereo"]
    assert merge_google_ocr({}) == []


def vision_response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.text = "error text"
    resp.json.return_value = payload if payload is not None else {}
    return resp


def test_extract_reads_ocr_payload():
    session = MagicMock()
    session.post.return_value = vision_response(
        payload={"responses": [{"fullTextAnnotation": {"text": "\n".join(BACK_COVER_LINES)}}]}
    )
    extractor = GoogleVisionExtractor(api_key="k", session=session)
    found = as_dict(extractor.extract(b"img", [FieldName.BARCODE, FieldName.YEAR], PhotoKind.BACK_COVER))
    assert found[FieldName.YEAR].value == "1969"
    body = session.post.call_args.kwargs["json"]
    assert body["requests"][0]["features"][0]["type"] == "TEXT_DETECTION"


@pytest.mark.parametrize(
    "configure",
    [
        lambda s: setattr(s.post, "return_value", vision_response(status=503)),
        lambda s: setattr(s.post, "side_effect", requests.ConnectionError("reset")),
        lambda s: setattr(
            s.post, "return_value", vision_response(payload={"responses": [{"error": {"message": "bad image"}}]})
        ),
    ],
)
def test_service_failures_raise_extraction_error(configure):
    session = MagicMock()
    configure(session)
    extractor = GoogleVisionExtractor(api_key="k", session=session)
    with pytest.raises(ExtractionServiceError):
        extractor.extract(b"img", ALL_FIELDS, PhotoKind.FRONT_COVER)


def test_missing_api_key_fails_without_a_request():
    session = MagicMock()
    with pytest.raises(ExtractionServiceError):
        GoogleVisionExtractor(api_key="", session=session).extract(b"img", ALL_FIELDS)
    session.post.assert_not_called()
