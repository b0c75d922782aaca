"""Pipeline Orchestrator.

``ScanPipeline.analyze`` takes two or more photos of one record or CD and
returns a ``PipelineResult``:

1. **Validate**: at least two photos, each decodable by Pillow. Anything
   else raises ``InvalidInputError`` before an external call is made.
2. **Extract**: one extraction-service call per photo, run concurrently on
   a small thread pool with a per-photo timeout. A failed or slow photo
   contributes zero-confidence extractions instead of aborting the scan.
3. **Normalize**: every guess becomes an ``Extraction``; catalogue and
   matrix readings that are really the barcode are rejected.
4. **Fuse**: one ``FusedField`` per logical field.
5. **Match**: priority-ordered catalog queries.
6. **Score** and **classify**.
7. **Assemble**: the result is built once, at the end, from the session.

All intermediate state lives on a ``ScanSession`` that is passed from stage
to stage; nothing is shared between concurrent extraction tasks.
"""

import io
import logging
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from PIL import Image
from pydantic import ValidationError

from .audit import AuditTrail
from .catalog import ReleaseCatalog, release_url
from .config import CANDIDATE_LIMIT, EXTRACTION_TIMEOUT, MAX_CONCURRENCY, MIN_PHOTOS
from .errors import ExtractionServiceError, InvalidInputError
from .fusion import fuse, fused_value
from .matcher import CatalogMatcher, MatchAttempt
from .models import (
    ALL_FIELDS,
    DEFAULT_PHOTO_ORDER,
    Candidate,
    Extraction,
    FieldGuess,
    FieldName,
    FusedField,
    MatchStatus,
    Photo,
    PhotoKind,
    PipelineResult,
    RawRelease,
)
from .normalize import cross_check, normalize_guess
from .outcome import Outcome, classify_outcome
from .scoring import score_candidates
from .vision import PhotoExtractor

logger = logging.getLogger(__name__)

PhotoInput = Union[Photo, bytes]


@dataclass
class ScanSession:
    """Everything one pipeline run knows, handed from stage to stage."""

    session_id: str
    photos: List[Photo]
    fields: List[FieldName]
    audit: AuditTrail
    extractions: List[Extraction] = field(default_factory=list)
    fused: Dict[FieldName, FusedField] = field(default_factory=dict)
    attempt: MatchAttempt = field(default_factory=MatchAttempt)
    candidates: List[Candidate] = field(default_factory=list)


@dataclass
class PhotoOutcome:
    """What one extraction call produced: guesses, an error, or nothing in time."""

    guesses: List[FieldGuess] = field(default_factory=list)
    error: Optional[BaseException] = None
    timed_out: bool = False


def default_kind(index: int) -> PhotoKind:
    if index < len(DEFAULT_PHOTO_ORDER):
        return DEFAULT_PHOTO_ORDER[index]
    return PhotoKind.OTHER


def source_tag(index: int, kind: PhotoKind) -> str:
    return f"photo-{index + 1}:{kind.value}"


def prepare_photos(
    photos: Sequence[PhotoInput],
    kinds: Optional[Sequence[Union[PhotoKind, str]]] = None,
) -> List[Photo]:
    """
    Validate caller input and tag every photo with a kind.

    Raises:
        InvalidInputError: fewer than two photos, an unknown kind, or an
            image that cannot be decoded.
    """
    if photos is None or len(photos) < MIN_PHOTOS:
        raise InvalidInputError(f"At least {MIN_PHOTOS} photos are required")
    if kinds is not None and len(kinds) != len(photos):
        raise InvalidInputError("kinds must have one entry per photo")

    out: List[Photo] = []
    for i, p in enumerate(photos):
        try:
            photo = p if isinstance(p, Photo) else Photo(content=p)
        except ValidationError:
            raise InvalidInputError(f"Photo {i + 1} is not image data") from None
        if kinds is not None:
            try:
                kind = PhotoKind(kinds[i])
            except ValueError:
                raise InvalidInputError(f"Unknown photo kind {kinds[i]!r}") from None
            photo = photo.model_copy(update={"kind": kind})
        elif not isinstance(p, Photo):
            photo = photo.model_copy(update={"kind": default_kind(i)})
        if not photo.content:
            raise InvalidInputError(f"Photo {i + 1} is empty")
        try:
            with Image.open(io.BytesIO(photo.content)) as im:
                im.verify()
        except Exception as exc:
            raise InvalidInputError(f"Photo {i + 1} is not a readable image: {exc}") from exc
        out.append(photo)
    return out


def zero_extractions(fields: Sequence[FieldName], source: str, kind: PhotoKind) -> List[Extraction]:
    return [Extraction(field=f, confidence=0.0, source=source, photo_kind=kind) for f in fields]


class ScanPipeline:
    def __init__(
        self,
        extractor: PhotoExtractor,
        catalog: ReleaseCatalog,
        fields: Sequence[FieldName] = ALL_FIELDS,
        max_concurrency: int = MAX_CONCURRENCY,
        extraction_timeout: float = EXTRACTION_TIMEOUT,
        candidate_limit: int = CANDIDATE_LIMIT,
    ):
        self.extractor = extractor
        self.matcher = CatalogMatcher(catalog, limit=candidate_limit)
        self.fields = list(fields)
        self.max_concurrency = max(1, max_concurrency)
        self.extraction_timeout = extraction_timeout
        self.last_result: Optional[PipelineResult] = None

    # ---------- CALLER API ----------
    def analyze(
        self,
        photos: Sequence[PhotoInput],
        kinds: Optional[Sequence[Union[PhotoKind, str]]] = None,
    ) -> PipelineResult:
        """
        Identify the release shown in ``photos``.

        Args:
            photos: Two or more images (raw bytes or tagged ``Photo``s).
            kinds: Optional photo kind per image; untagged bytes are assigned
                front cover, back cover, label, then other, by position.

        Returns:
            The session's PipelineResult. Ambiguity and low confidence are
            reported through ``match_status``, never raised.

        Raises:
            InvalidInputError: before any external call, for bad input.
        """
        prepared = prepare_photos(photos, kinds)
        session_id = uuid.uuid4().hex
        session = ScanSession(
            session_id=session_id,
            photos=prepared,
            fields=list(self.fields),
            audit=AuditTrail(session_id),
        )
        logger.info("Scan %s started with %d photos", session_id, len(prepared))

        self.extract_all(session)
        self.fuse(session)
        self.match(session)
        self.score(session)
        outcome = self.classify(session)
        result = self.assemble(session, outcome)

        self.last_result = result
        logger.info(
            "Scan %s finished: %s (confidence %.2f, %d candidates)",
            session_id,
            result.match_status.value,
            result.overall_confidence,
            len(result.candidates),
        )
        return result

    def reset(self) -> None:
        """Forget the previous result; the next ``analyze`` starts a fresh session.

        Sessions live only inside ``analyze``, so there is no in-progress
        state to drop and concurrent callers never share one.
        """
        self.last_result = None

    # ---------- STAGES ----------
    def _extract_photo(self, photo: Photo) -> List[FieldGuess]:
        guesses = self.extractor.extract(photo.content, self.fields, photo.kind)
        # Re-validate at the boundary: extractors may hand back plain dicts
        return [g if isinstance(g, FieldGuess) else FieldGuess.model_validate(g) for g in guesses]

    def _to_extractions(
        self, guesses: List[FieldGuess], source: str, kind: PhotoKind
    ) -> Tuple[List[Extraction], List[str]]:
        best: Dict[FieldName, FieldGuess] = {}
        for g in guesses:
            if g.field in best and best[g.field].confidence >= g.confidence:
                continue
            best[g.field] = g
        extractions = []
        for f in self.fields:
            g = best.get(f)
            if g is None:
                extractions.append(Extraction(field=f, confidence=0.0, source=source, photo_kind=kind))
            else:
                extractions.append(normalize_guess(f, g.value, g.confidence, source, kind))
        return cross_check(extractions)

    def run_extractions(self, photos: List[Photo]) -> List[PhotoOutcome]:
        """
        Call the extractor once per photo, ``max_concurrency`` calls at a time.

        Each call's deadline starts when the call is submitted, not when a
        slot frees up, so a photo waiting behind slow ones is never charged
        for the wait. A call that misses its deadline is abandoned and its
        slot goes to the next queued photo.
        """
        outcomes: Dict[int, PhotoOutcome] = {}
        queue = list(range(len(photos)))
        in_flight: Dict[Future, Tuple[int, float]] = {}
        # One thread per photo: abandoned calls keep their thread busy
        executor = ThreadPoolExecutor(max_workers=len(photos), thread_name_prefix="extract")
        try:
            while queue or in_flight:
                while queue and len(in_flight) < self.max_concurrency:
                    i = queue.pop(0)
                    future = executor.submit(self._extract_photo, photos[i])
                    in_flight[future] = (i, time.monotonic() + self.extraction_timeout)

                next_deadline = min(deadline for _, deadline in in_flight.values())
                done, _ = wait(
                    list(in_flight),
                    timeout=max(0.0, next_deadline - time.monotonic()),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    i, _ = in_flight.pop(future)
                    try:
                        outcomes[i] = PhotoOutcome(guesses=future.result())
                    except Exception as exc:
                        outcomes[i] = PhotoOutcome(error=exc)

                now = time.monotonic()
                for future, (i, deadline) in list(in_flight.items()):
                    if deadline <= now:
                        del in_flight[future]
                        future.cancel()
                        outcomes[i] = PhotoOutcome(timed_out=True)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return [outcomes[i] for i in range(len(photos))]

    def extract_all(self, session: ScanSession) -> None:
        """Run one extraction per photo concurrently and normalize the results."""
        outcomes = self.run_extractions(session.photos)
        for i, (photo, outcome) in enumerate(zip(session.photos, outcomes)):
            source = source_tag(i, photo.kind)
            if outcome.timed_out:
                session.audit.record(
                    "extraction_timeout",
                    f"{source}: no answer within {self.extraction_timeout:g}s",
                )
                session.extractions.extend(zero_extractions(self.fields, source, photo.kind))
                continue
            if outcome.error is not None:
                exc = outcome.error
                if isinstance(exc, (ExtractionServiceError, ValidationError)):
                    session.audit.record("extraction_failed", f"{source}: {exc}")
                else:
                    logger.error("Unexpected extraction error for %s", source, exc_info=exc)
                    session.audit.record("extraction_failed", f"{source}: {type(exc).__name__}: {exc}")
                session.extractions.extend(zero_extractions(self.fields, source, photo.kind))
                continue

            extractions, notes = self._to_extractions(outcome.guesses, source, photo.kind)
            for note in notes:
                session.audit.record("extraction_rejected", f"{source}: {note}")
            session.extractions.extend(extractions)
            observed = [f"{e.field.value}={e.normalized!r}" for e in extractions if e.confidence > 0]
            session.audit.record(
                "extraction_completed",
                f"{source}: {len(observed)}/{len(self.fields)} fields"
                + (f" ({', '.join(observed)})" if observed else ""),
            )

    def fuse(self, session: ScanSession) -> None:
        session.fused = fuse(session.extractions)
        summary = [
            f"{f.field.value}={f.value!r}@{f.confidence:.2f}"
            for f in session.fused.values()
            if f.confidence > 0
        ]
        session.audit.record("fusion_completed", ", ".join(summary) if summary else "no field observed")

    def match(self, session: ScanSession) -> None:
        session.attempt = self.matcher.find(session.fused, session.audit)

    def score(self, session: ScanSession) -> None:
        session.candidates = score_candidates(session.fused, session.attempt.releases)
        detail = " | ".join(
            f"{c.release_id}:{c.score:.2f} [{', '.join(c.reasons)}]" for c in session.candidates[:5]
        )
        session.audit.record("scoring_completed", f"{len(session.candidates)} candidates. {detail}".strip())

    def classify(self, session: ScanSession) -> Outcome:
        outcome = classify_outcome(session.candidates, session.fused)
        detail = f"{outcome.status.value}, confidence {outcome.overall_confidence:.2f}"
        if outcome.matched_release_id is not None:
            detail += f", release {outcome.matched_release_id}"
        if outcome.missing_fields:
            detail += ", missing " + ", ".join(f.value for f in outcome.missing_fields)
        session.audit.record("outcome_classified", detail)
        return outcome

    def assemble(self, session: ScanSession, outcome: Outcome) -> PipelineResult:
        artist = fused_value(session.fused, FieldName.ARTIST)
        title = fused_value(session.fused, FieldName.TITLE)
        matched_url = None
        if outcome.status == MatchStatus.SINGLE_MATCH:
            release = self._release(session, outcome.matched_release_id)
            if release is not None:
                artist = artist or release.artist
                title = title or release.title or None
                matched_url = release.url
            matched_url = matched_url or release_url(outcome.matched_release_id)
        return PipelineResult(
            session_id=session.session_id,
            artist=artist,
            title=title,
            match_status=outcome.status,
            matched_release_id=outcome.matched_release_id,
            matched_release_url=matched_url,
            overall_confidence=round(outcome.overall_confidence, 4),
            candidates=list(session.candidates),
            extractions=list(session.extractions),
            missing_fields=list(outcome.missing_fields),
            photo_guidance=list(outcome.photo_guidance),
            audit=session.audit.entries,
        )

    @staticmethod
    def _release(session: ScanSession, release_id: Optional[int]) -> Optional[RawRelease]:
        for r in session.attempt.releases:
            if r.release_id == release_id:
                return r
        return None
