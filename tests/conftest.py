from typing import Any, List, Optional, Sequence

import numpy as np
import pytest

from introspect.core.models import AnalysisRecord, Sample, VitalsReading
from introspect.core.schemas import AnalysisResult, AnalyzeResponse, SessionStats, SummaryResponse


@pytest.fixture
def anyio_backend():
    return "asyncio"


def analyze_ok(analysis: Optional[str] = "Calm and focused.", expression: Optional[str] = "happy",
               timestamp: float = 1.0, error: Optional[str] = None) -> AnalyzeResponse:
    return AnalyzeResponse(
        results=[AnalysisResult(analysis=analysis, expression=expression, timestamp=timestamp, error=error)],
        total_processed=1,
    )


def summary_ok(text: str = "Good session.\nDetails follow.", duration: str = "185") -> SummaryResponse:
    return SummaryResponse(
        summary=text,
        session_stats=SessionStats(
            total_insights=3,
            duration=duration,
            most_common_emotion="happy",
            emotion_distribution={"happy": 3},
        ),
    )


class FakeBackend:
    """Scripted analysis service. Queued items may be responses or exceptions."""

    def __init__(self) -> None:
        self.analyze_queue: List[Any] = []
        self.summary_result: Any = summary_ok()
        self.speech_audio: Optional[str] = "SUQzBAAAAAAA"
        self.speech_error: Optional[Exception] = None

        self.analyze_calls: List[tuple] = []
        self.summary_calls: List[List[AnalysisRecord]] = []
        self.speak_calls: List[tuple] = []

    async def analyze(self, samples: Sequence[Sample], content_mode: str) -> AnalyzeResponse:
        self.analyze_calls.append((list(samples), content_mode))
        item = self.analyze_queue.pop(0) if self.analyze_queue else analyze_ok()
        if isinstance(item, Exception):
            raise item
        return item

    async def summarize(self, records: Sequence[AnalysisRecord]) -> SummaryResponse:
        self.summary_calls.append(list(records))
        if isinstance(self.summary_result, Exception):
            raise self.summary_result
        return self.summary_result

    async def speak(self, text: str, voice_id: Optional[str] = None) -> Optional[str]:
        self.speak_calls.append((text, voice_id))
        if self.speech_error is not None:
            raise self.speech_error
        return self.speech_audio


class FakeSource:
    """Capture source that always returns whatever reading it was given."""

    def __init__(self, reading: Optional[VitalsReading] = None) -> None:
        self.reading = reading
        self.started = 0
        self.stopped = 0

    async def start(self) -> None:
        self.started += 1

    async def stop(self) -> None:
        self.stopped += 1

    def latest(self) -> Optional[VitalsReading]:
        return self.reading


class RecordingPlayer:

    def __init__(self) -> None:
        self.played: List[str] = []

    def play_base64(self, audio_b64: str) -> bool:
        self.played.append(audio_b64)
        return True


def make_frame(width: int = 64, height: int = 48) -> np.ndarray:
    rng = np.random.default_rng(0)
    return rng.integers(0, 255, size=(height, width, 3), dtype=np.uint8)


def make_reading(pulse: int = 72, breath: int = 14, timestamp: float = 12.5) -> VitalsReading:
    return VitalsReading(pulse_rate=pulse, breath_rate=breath, timestamp=timestamp, frame=make_frame())


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource(make_reading())


@pytest.fixture
def player() -> RecordingPlayer:
    return RecordingPlayer()
