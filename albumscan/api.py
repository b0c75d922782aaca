"""HTTP surface of the scan pipeline.

``POST /api/scan`` takes two or more photos of one record or CD as multipart
``files`` (optionally tagged with one ``kinds`` value per file: front_cover,
back_cover, label, matrix, barcode, spine, other) and returns the
``PipelineResult``. Bad input is a 400; everything else, including an
unreachable catalog, comes back as a normal result with a ``match_status``.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from starlette.concurrency import run_in_threadpool

from .catalog import build_catalog
from .errors import InvalidInputError
from .models import PipelineResult
from .pipeline import ScanPipeline
from .vision import GoogleVisionExtractor

logger = logging.getLogger(__name__)

router = APIRouter()

_pipeline: Optional[ScanPipeline] = None


def get_pipeline() -> ScanPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = ScanPipeline(GoogleVisionExtractor(), build_catalog())
    return _pipeline


@router.post("/api/scan", response_model=PipelineResult)
async def scan_api(
    files: List[UploadFile] = File(...),
    kinds: Optional[List[str]] = Form(None),
) -> PipelineResult:
    contents = [await upload.read() for upload in files]
    pipeline = get_pipeline()
    try:
        # kinds, when sent, must name one kind per file; untagged uploads get
        # positional kinds. prepare_photos enforces both.
        return await run_in_threadpool(pipeline.analyze, contents, kinds or None)
    except InvalidInputError as exc:
        logger.info("Rejected scan request: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/api/scan/reset")
def reset_api():
    get_pipeline().reset()
    return {"status": "reset"}
