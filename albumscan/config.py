"""Settings for the album scan pipeline.

Everything that depends on the hosting environment is read from environment
variables at import time. Pipeline thresholds and weights live here as plain
constants so that tuning them against real scans only touches one file.
"""

import os

# ---------- EXTERNAL SERVICES ----------
VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"
VISION_KEY = os.environ.get("GOOGLE_VISION_API_KEY", "").strip()

DISCOGS_API = "https://api.discogs.com"
DISCOGS_TOKEN = os.environ.get("DISCOGS_TOKEN", "").strip()
DISCOGS_USER_AGENT = "AlbumScan/1.0 (+https://grooveid.app)"
DISCOGS_RATE_PER_MINUTE = int(os.environ.get("DISCOGS_RATE_PER_MINUTE", "60"))

SUPABASE_URL = os.environ.get("SUPABASE_URL", "").strip()
SUPABASE_KEY = os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "").strip()
# Supabase table holding a Discogs dump
LOCAL_TABLE = os.environ.get("DISCOGS_LOCAL_TABLE", "records")

# "discogs" or "supabase"
CATALOG_BACKEND = os.environ.get("ALBUMSCAN_CATALOG", "discogs").strip().lower()

LOG_LEVEL = os.environ.get("ALBUMSCAN_LOG_LEVEL", "INFO").upper()

# ---------- PIPELINE LIMITS ----------
MIN_PHOTOS = 2
MAX_CONCURRENCY = int(os.environ.get("ALBUMSCAN_MAX_CONCURRENCY", "4"))
EXTRACTION_TIMEOUT = float(os.environ.get("ALBUMSCAN_EXTRACTION_TIMEOUT", "30"))
CATALOG_TIMEOUT = 20
CANDIDATE_LIMIT = int(os.environ.get("ALBUMSCAN_CANDIDATE_LIMIT", "20"))

# ---------- FUSION ----------
FUSION_CAP = 0.99

# ---------- MATCHING ----------
YEAR_WINDOW = 2

# ---------- SCORING ----------
# Ordered by discriminative power; reasons are emitted in this order.
SCORE_WEIGHTS = {
    "barcode": 0.30,
    "catalog_number": 0.25,
    "label": 0.15,
    "year": 0.12,
    "title": 0.09,
    "artist": 0.06,
    "country": 0.03,
}
YEAR_DECAY_YEARS = 3
SIMILARITY_FLOOR = 0.5

# ---------- OUTCOME ----------
HIGH_CONFIDENCE = 0.85
MIN_MARGIN = 0.15
MEDIUM_CONFIDENCE = 0.5
MATCH_FLOOR = 0.3
USABILITY_FLOOR = 0.3
