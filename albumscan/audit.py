"""Audit Recorder: append-only trail of pipeline steps."""

import datetime
import logging
from typing import List

from .models import AuditEntry

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class AuditTrail:
    """Ordered log of what the pipeline did, returned verbatim to the caller."""

    def __init__(self, session_id: str = ""):
        self.session_id = session_id
        self._entries: List[AuditEntry] = []

    def record(self, step: str, detail: str) -> AuditEntry:
        entry = AuditEntry(step=step, detail=detail, timestamp=utc_timestamp())
        self._entries.append(entry)
        logger.debug("[%s] %s: %s", self.session_id, step, detail)
        return entry

    @property
    def entries(self) -> List[AuditEntry]:
        return list(self._entries)

    def steps(self) -> List[str]:
        return [e.step for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
