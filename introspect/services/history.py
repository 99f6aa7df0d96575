"""
IntroSpect — Session History

Ordered list of completed-session summaries, newest first.
`InMemoryHistoryStore` lives for the process; `JsonFileHistoryStore`
persists to a JSON file, rewritten atomically on every add.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from ..core.models import SessionSummary

logger = logging.getLogger("introspect.history")


class InMemoryHistoryStore:

    def __init__(self, sessions: Optional[List[SessionSummary]] = None) -> None:
        self._sessions: List[SessionSummary] = list(sessions or [])

    def add(self, summary: SessionSummary) -> None:
        self._sessions.insert(0, summary)
        logger.info(f"History: added {summary.id} (total: {len(self._sessions)})")

    def list(self) -> List[SessionSummary]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)


class JsonFileHistoryStore(InMemoryHistoryStore):
    """In-memory store mirrored to disk. Corrupt files load as empty."""

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)
        super().__init__(self._load())

    @property
    def path(self) -> Path:
        return self._path

    def add(self, summary: SessionSummary) -> None:
        """Write the new list to disk first; memory changes only if that succeeded."""
        candidate = [summary] + self._sessions
        self._flush(candidate)
        self._sessions = candidate
        logger.info(f"History: saved {summary.id} to {self._path} (total: {len(candidate)})")

    def _load(self) -> List[SessionSummary]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return [SessionSummary.from_dict(item) for item in raw]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"History file {self._path} unreadable, starting empty: {e}")
            return []

    def _flush(self, sessions: List[SessionSummary]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([s.to_dict() for s in sessions], indent=2)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self._path)
        except OSError:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
