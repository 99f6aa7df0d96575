"""
IntroSpect — Data Models

Dataclasses for every piece of data flowing through a monitoring session.
Wire-facing `to_wire()` helpers emit the exact JSON field names the
analysis service expects.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Tuple


# ---------------------------------------------------------------------------
# Capture-side readings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VitalsReading:
    """
    Latest values published by the vitals capture source.

    `frame` is an RGB uint8 numpy array (H, W, 3), or None until the
    camera has delivered its first image.
    """
    pulse_rate: int = 0
    breath_rate: int = 0
    timestamp: float = 0.0
    frame: Any = None


@dataclass(frozen=True)
class Sample:
    """One tick's snapshot, sent as a single-element batch to /analyze."""
    pulse_rate: int
    breath_rate: int
    timestamp: float
    image: Optional[str] = None  # base64 JPEG

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "Pulse": self.pulse_rate,
            "Breath": self.breath_rate,
            "Time": self.timestamp,
        }
        if self.image is not None:
            payload["Image"] = self.image
        return payload


# ---------------------------------------------------------------------------
# Per-tick analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SampledMetrics:
    heart_rate: Optional[int] = None
    breath_rate: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.heart_rate is not None:
            out["heartRate"] = self.heart_rate
        if self.breath_rate is not None:
            out["breathRate"] = self.breath_rate
        return out


@dataclass(frozen=True)
class AnalysisRecord:
    """An analyze result plus the vitals that were sampled for it."""
    timestamp: float
    analysis: Optional[str] = None
    expression: Optional[str] = None
    error: Optional[str] = None
    metrics: Optional[SampledMetrics] = None

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"timestamp": self.timestamp}
        if self.analysis is not None:
            out["analysis"] = self.analysis
        if self.expression is not None:
            out["expression"] = self.expression
        if self.error is not None:
            out["error"] = self.error
        if self.metrics is not None:
            out["metrics"] = self.metrics.to_wire()
        return out


# ---------------------------------------------------------------------------
# End-of-session summary
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionSummary:
    """Persisted record of one completed session."""
    duration_minutes: int
    headline: str
    full_text: str
    average_heart_rate: int
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["date"] = self.date.isoformat()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSummary":
        return cls(
            id=str(data["id"]),
            date=datetime.fromisoformat(data["date"]),
            duration_minutes=int(data["duration_minutes"]),
            headline=str(data["headline"]),
            full_text=str(data["full_text"]),
            average_heart_rate=int(data["average_heart_rate"]),
        )


# ---------------------------------------------------------------------------
# Live feedback + user settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LiveFeedback:
    """What the user currently sees in the insights and expression cards."""
    insight: str
    expression: str = "Neutral"
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


FEEDBACK_CONTENT_OPTIONS: Tuple[str, ...] = ("Insight Provided by Gemini", "Quantitative")
FEEDBACK_FORMAT_OPTIONS: Tuple[str, ...] = ("Audio", "Text")


@dataclass
class FeedbackSettings:
    """User-selected display and feedback options."""
    pulse_rate_enabled: bool = True
    breath_rate_enabled: bool = True
    expressions_enabled: bool = True
    # Choose one
    selected_feedback_content: Optional[str] = FEEDBACK_CONTENT_OPTIONS[0]
    # Choose one or two
    selected_feedback_formats: FrozenSet[str] = frozenset({"Audio", "Text"})

    @property
    def content_mode(self) -> str:
        return (self.selected_feedback_content or "").lower()

    @property
    def audio_enabled(self) -> bool:
        return "Audio" in self.selected_feedback_formats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pulse_rate_enabled": self.pulse_rate_enabled,
            "breath_rate_enabled": self.breath_rate_enabled,
            "expressions_enabled": self.expressions_enabled,
            "selected_feedback_content": self.selected_feedback_content,
            "selected_feedback_formats": sorted(self.selected_feedback_formats),
            "content_mode": self.content_mode,
        }


# ---------------------------------------------------------------------------
# Session telemetry
# ---------------------------------------------------------------------------

@dataclass
class SessionTelemetry:
    """Per-session counters, reported by GET /session."""
    session_id: str = ""
    ticks_fired: int = 0
    ticks_skipped: int = 0
    ticks_without_frame: int = 0
    ticks_failed: int = 0
    analyses_recorded: int = 0
    application_errors: int = 0
    speech_played: int = 0
    last_analyze_latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
