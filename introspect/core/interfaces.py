"""
IntroSpect — Collaborator Interfaces

Protocol definitions for everything the session controller talks to but
does not own:
  1. Capture   — the vitals source (pulse, breath, camera frames)
  2. Analysis  — the remote analyze / summary / speech service
  3. Playback  — audio output for spoken insights
  4. History   — durable list of past session summaries

The controller depends only on these protocols; concrete objects are
constructed by the caller and injected.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from .models import AnalysisRecord, Sample, SessionSummary, VitalsReading
from .schemas import AnalyzeResponse, SummaryResponse


# ═══════════════════════════════════════════════════════════════════════════
# Capture — vitals source
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class VitalsSource(Protocol):
    """Emits pulse/breath readings and frames while started."""

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        """Must be idempotent."""
        ...

    def latest(self) -> Optional[VitalsReading]:
        """Most recent reading, or None if nothing has arrived yet."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Analysis — remote service
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class AnalysisBackend(Protocol):
    """One HTTP round trip per call, no retries. Raises AnalysisClientError."""

    async def analyze(self, samples: Sequence[Sample], content_mode: str) -> AnalyzeResponse:
        ...

    async def summarize(self, records: Sequence[AnalysisRecord]) -> SummaryResponse:
        ...

    async def speak(self, text: str, voice_id: Optional[str] = None) -> Optional[str]:
        """Base64 audio, or None when the service produced none."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Playback
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class AudioPlayer(Protocol):

    def play_base64(self, audio_b64: str) -> bool:
        """Decode and play. False if the clip could not be played."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
# History
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class HistoryStore(Protocol):
    """Append-only from the controller's point of view; newest first."""

    def add(self, summary: SessionSummary) -> None:
        ...

    def list(self) -> List[SessionSummary]:
        ...
