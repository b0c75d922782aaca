"""AlbumScan backend.

FastAPI application exposing the multi-photo album identification pipeline.
Connection details for Google Vision, Discogs and (optionally) Supabase come
from environment variables, see ``albumscan.config``.
"""

import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .api import router as scan_router


def setup_logging(level: str = config.LOG_LEVEL) -> None:
    """Log to stdout; keep HTTP client libraries quiet."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    for noisy_logger in ["urllib3", "httpx", "httpcore", "hpack"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="AlbumScan")
    # Configure CORS to allow requests from any origin. In production,
    # restrict this to the frontend domain.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(scan_router)

    @app.get("/")
    def read_root():
        return {"message": "AlbumScan backend"}

    return app


app = create_app()


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("albumscan.app:app", host="0.0.0.0", port=8000, reload=True)
