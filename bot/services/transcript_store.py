from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from services.transcript_service import TranscriptDocument

LOGGER = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"^[0-9a-f]{32}$")


@dataclass(slots=True, frozen=True)
class StoredTranscript:
    token: str
    url: str
    expires_at: float


class TranscriptStore:
    """Keeps rendered transcripts on disk for link retrieval until their retention lapses.

    Expiry is derived from each file's modification time, so stored links stay
    valid across restarts for the rest of their window.
    """

    def __init__(
        self,
        directory: Path,
        retention: timedelta,
        public_base_url: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.directory = directory
        self.retention_seconds = retention.total_seconds()
        self.public_base_url = public_base_url.rstrip("/")
        self._clock = clock
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, token: str) -> Path:
        return self.directory / f"{token}.html"

    def url_for(self, token: str) -> str:
        return f"{self.public_base_url}/transcripts/{token}"

    def save(self, document: TranscriptDocument) -> StoredTranscript:
        token = uuid4().hex
        path = self._path(token)
        path.write_bytes(document.data)
        stored_at = path.stat().st_mtime
        LOGGER.info("Stored transcript %s as %s", document.filename, token)
        return StoredTranscript(
            token=token,
            url=self.url_for(token),
            expires_at=stored_at + self.retention_seconds,
        )

    def _is_expired(self, path: Path) -> bool:
        return self._clock() >= path.stat().st_mtime + self.retention_seconds

    def load(self, token: str) -> str | None:
        if not _TOKEN_PATTERN.match(token):
            return None
        path = self._path(token)
        try:
            if self._is_expired(path):
                path.unlink(missing_ok=True)
                LOGGER.info("Purged expired transcript %s on read", token)
                return None
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def purge_expired(self) -> int:
        purged = 0
        for path in self.directory.glob("*.html"):
            try:
                if self._is_expired(path):
                    path.unlink(missing_ok=True)
                    purged += 1
            except FileNotFoundError:
                continue
        if purged:
            LOGGER.info("Purged %s expired transcripts", purged)
        return purged
