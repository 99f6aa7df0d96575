"""
IntroSpect — Wire Schemas

Pydantic models for every response body the analysis service returns.
Anything that fails validation here surfaces as a decode error.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# POST /analyze
# ---------------------------------------------------------------------------

class AnalysisResult(_WireModel):
    analysis: Optional[str] = None
    expression: Optional[str] = None
    timestamp: float
    error: Optional[str] = None


class AnalyzeResponse(_WireModel):
    results: List[AnalysisResult]
    total_processed: Optional[int] = Field(default=None, alias="totalProcessed")


# ---------------------------------------------------------------------------
# POST /summary
# ---------------------------------------------------------------------------

class SessionStats(_WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    total_insights: int = Field(alias="totalInsights")
    duration: str  # seconds, as a string
    most_common_emotion: str = Field(alias="mostCommonEmotion")
    emotion_distribution: Dict[str, int] = Field(alias="emotionDistribution")


class SummaryResponse(_WireModel):
    summary: str
    session_stats: Optional[SessionStats] = Field(default=None, alias="sessionStats")


# ---------------------------------------------------------------------------
# POST /tts
# ---------------------------------------------------------------------------

class TTSResult(_WireModel):
    audio: Optional[str] = None  # base64
    error: Optional[str] = None


class TTSBatchResponse(_WireModel):
    results: List[TTSResult]
