"""Release catalog clients.

Two backends answer the same structured ``CatalogQuery``:

* ``DiscogsCatalog`` calls the Discogs ``/database/search`` endpoint, paced by
  the shared token bucket.
* ``SupabaseCatalog`` queries a Supabase table holding a Discogs dump
  (``DISCOGS_LOCAL_TABLE``), the same table the label scanner uses for its
  local lookups.

Both raise ``CatalogUnavailableError`` when the backend cannot be reached and
return an empty list when it simply has nothing.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from . import config
from .errors import CatalogUnavailableError
from .models import CatalogQuery, QueryKind, RawRelease
from .rate_limiter import TokenBucket, discogs_bucket, rate_limited

logger = logging.getLogger(__name__)

RE_RELEASE = re.compile(r"/release[s]?/(\d+)", re.IGNORECASE)


def release_url(release_id: int) -> str:
    return f"https://www.discogs.com/release/{release_id}"


def parse_rid(url: Optional[str]) -> Optional[int]:
    if not url:
        return None
    m = RE_RELEASE.search(url)
    return int(m.group(1)) if m else None


def parse_year(value: Any) -> Optional[int]:
    m = re.search(r"\d{4}", str(value or ""))
    return int(m.group(0)) if m else None


def in_year_range(year: Optional[int], query: CatalogQuery) -> bool:
    if query.year_from is None or query.year_to is None:
        return True
    return year is not None and query.year_from <= year <= query.year_to


class ReleaseCatalog(ABC):
    """A searchable release catalog."""

    @abstractmethod
    def search(self, query: CatalogQuery, limit: int) -> List[RawRelease]:
        """
        Run one structured query.

        Returns:
            At most ``limit`` releases, possibly none.

        Raises:
            CatalogUnavailableError: network error, timeout or bad status.
        """
        ...


# ---------- DISCOGS ----------
class DiscogsCatalog(ReleaseCatalog):
    def __init__(
        self,
        token: str = config.DISCOGS_TOKEN,
        timeout: int = config.CATALOG_TIMEOUT,
        session=None,
        bucket: Optional[TokenBucket] = None,
    ):
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.bucket = bucket if bucket is not None else discogs_bucket

    @rate_limited
    def discogs_request(self, path: str, params: Dict = None) -> requests.Response:
        """Make a GET request to the Discogs API, attaching the token and user agent."""
        if params is None:
            params = {}
        headers: Dict[str, str] = {"User-Agent": config.DISCOGS_USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Discogs token={self.token}"
        url = path if path.startswith("http") else f"{config.DISCOGS_API}{path}"
        return self.session.get(url, headers=headers, params=params, timeout=self.timeout)

    @staticmethod
    def search_params(query: CatalogQuery, limit: int) -> Dict[str, str]:
        params: Dict[str, str] = {"type": "release", "per_page": str(limit)}
        if query.kind == QueryKind.BARCODE:
            params["barcode"] = query.barcode or ""
        elif query.kind == QueryKind.CATALOG_NUMBER_LABEL:
            params["catno"] = query.catalog_number or ""
            if query.label:
                params["label"] = query.label
        else:
            params["artist"] = query.artist or ""
            params["release_title"] = query.title or ""
        return params

    @staticmethod
    def parse_result(item: Dict[str, Any]) -> Optional[RawRelease]:
        rid = item.get("id") or parse_rid(item.get("resource_url") or item.get("uri"))
        if not rid or item.get("type", "release") != "release":
            return None
        full_title = item.get("title") or ""
        artist, title = None, full_title
        if " - " in full_title:
            artist, title = full_title.split(" - ", 1)
        labels = item.get("label")
        label = labels[0] if isinstance(labels, list) and labels else labels or None
        formats = item.get("format")
        fmt = formats[0] if isinstance(formats, list) and formats else formats or None
        return RawRelease(
            release_id=int(rid),
            title=title.strip(),
            artist=artist.strip() if artist else None,
            year=parse_year(item.get("year")),
            country=item.get("country") or None,
            label=label,
            catalog_number=item.get("catno") or None,
            barcodes=[str(b) for b in item.get("barcode") or []],
            format=fmt,
            url=release_url(int(rid)),
        )

    def search(self, query: CatalogQuery, limit: int) -> List[RawRelease]:
        params = self.search_params(query, limit)
        try:
            r = self.discogs_request("/database/search", params)
        except requests.RequestException as exc:
            raise CatalogUnavailableError(f"Discogs search failed: {exc}") from exc
        if r.status_code != 200:
            raise CatalogUnavailableError(f"Discogs search error {r.status_code}: {r.text[:200]}")
        try:
            payload = r.json()
        except ValueError as exc:
            raise CatalogUnavailableError("Discogs returned an unreadable payload") from exc
        if not isinstance(payload, dict):
            raise CatalogUnavailableError(f"Discogs returned {type(payload).__name__}, expected an object")
        results = payload.get("results") or []
        if not isinstance(results, list):
            raise CatalogUnavailableError("Discogs results field is not a list")
        out: List[RawRelease] = []
        for item in results:
            release = self._parse_or_skip(item)
            if release is None or not in_year_range(release.year, query):
                continue
            out.append(release)
            if len(out) >= limit:
                break
        return out

    def _parse_or_skip(self, item: Any) -> Optional[RawRelease]:
        if not isinstance(item, dict):
            return None
        try:
            return self.parse_result(item)
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping malformed Discogs result %r: %s", item.get("id"), exc)
            return None


# ---------- SUPABASE DUMP ----------
LOCAL_COLUMNS = "release_id,label,catalog_no,artist,title,year,country,barcode,discogs_url"


class SupabaseCatalog(ReleaseCatalog):
    def __init__(self, client, table: str = config.LOCAL_TABLE):
        self.client = client
        self.table = table

    def _build(self, query: CatalogQuery, limit: int):
        q = self.client.table(self.table).select(LOCAL_COLUMNS)
        if query.kind == QueryKind.BARCODE:
            q = q.eq("barcode", query.barcode)
        elif query.kind == QueryKind.CATALOG_NUMBER_LABEL:
            q = q.ilike("catalog_no", query.catalog_number or "")
            if query.label:
                q = q.ilike("label", f"%{query.label.strip()}%")
        else:
            q = q.ilike("artist", f"%{query.artist}%").ilike("title", f"%{query.title}%")
            if query.kind == QueryKind.ARTIST_TITLE_YEAR:
                q = q.gte("year", query.year_from).lte("year", query.year_to)
        return q.limit(limit)

    @staticmethod
    def parse_row(row: Dict[str, Any]) -> Optional[RawRelease]:
        rid = row.get("release_id") or parse_rid(row.get("discogs_url"))
        try:
            rid = int(rid) if rid else None
        except (TypeError, ValueError):
            rid = None
        if not rid:
            return None
        barcode = row.get("barcode")
        barcodes = barcode if isinstance(barcode, list) else [barcode] if barcode else []
        return RawRelease(
            release_id=rid,
            title=row.get("title") or "",
            artist=row.get("artist"),
            year=parse_year(row.get("year")),
            country=row.get("country"),
            label=row.get("label"),
            catalog_number=row.get("catalog_no"),
            barcodes=[str(b) for b in barcodes],
            url=row.get("discogs_url") or release_url(rid),
        )

    def search(self, query: CatalogQuery, limit: int) -> List[RawRelease]:
        try:
            res = self._build(query, limit).execute()
        except Exception as exc:
            raise CatalogUnavailableError(f"Supabase lookup failed: {exc}") from exc
        out: List[RawRelease] = []
        for row in res.data or []:
            try:
                release = self.parse_row(row) if isinstance(row, dict) else None
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping malformed catalog row: %s", exc)
                continue
            if release is not None:
                out.append(release)
        return out[:limit]


def build_catalog(backend: str = config.CATALOG_BACKEND) -> ReleaseCatalog:
    """Catalog client selected by ``ALBUMSCAN_CATALOG``."""
    if backend == "supabase":
        from supabase import create_client  # type: ignore

        if not (config.SUPABASE_URL and config.SUPABASE_KEY):
            raise RuntimeError("Missing Supabase configuration: SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set.")
        return SupabaseCatalog(create_client(config.SUPABASE_URL, config.SUPABASE_KEY))
    return DiscogsCatalog()
