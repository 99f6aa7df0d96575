"""
IntroSpect — Session Summary Reducer

Reduces a session's AnalysisRecord buffer into one SessionSummary.

  • empty buffer        → no summary call, no record
  • summary call fails  → no record, error text for the user
  • otherwise           → record built from the service text + local vitals,
                          appended to the history store

Missing heart-rate values count as 0 and still add to the divisor.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from ..core.config import SessionConfig, session_cfg
from ..core.interfaces import AnalysisBackend, HistoryStore
from ..core.models import AnalysisRecord, SessionSummary
from ..core.schemas import SummaryResponse
from ..services.analysis_client import AnalysisClientError

logger = logging.getLogger("introspect.summary")


@dataclass(frozen=True)
class SummaryOutcome:
    """Result of the end-of-session pipeline."""
    summary: Optional[SessionSummary]
    message: str
    called_service: bool = False


def average_heart_rate(records: Sequence[AnalysisRecord]) -> int:
    if not records:
        return 0
    total = sum(
        (r.metrics.heart_rate if r.metrics and r.metrics.heart_rate is not None else 0)
        for r in records
    )
    # Round half away from zero, not banker's rounding
    return int(math.floor(total / len(records) + 0.5))


def extract_headline(text: str) -> str:
    for line in text.split("\n"):
        line = line.strip()
        if line:
            return line
    return text


def duration_minutes(duration_seconds: Optional[str]) -> int:
    try:
        seconds = float(duration_seconds or "0")
    except ValueError:
        logger.debug(f"Unparseable session duration: {duration_seconds!r}")
        return 0
    if not math.isfinite(seconds) or seconds <= 0:
        return 0
    return int(seconds // 60)


def build_summary(records: Sequence[AnalysisRecord], response: SummaryResponse) -> SessionSummary:
    stats = response.session_stats
    return SessionSummary(
        duration_minutes=duration_minutes(stats.duration if stats else None),
        headline=extract_headline(response.summary),
        full_text=response.summary,
        average_heart_rate=average_heart_rate(records),
    )


async def run_summary_pipeline(
    records: Sequence[AnalysisRecord],
    backend: AnalysisBackend,
    history: HistoryStore,
    config: SessionConfig = session_cfg,
    session_id: str = "",
) -> SummaryOutcome:
    """Never raises for service failures; the outcome carries the user text."""
    if not records:
        logger.info(f"[{session_id}] No analyses collected — skipping summary")
        return SummaryOutcome(summary=None, message=config.no_data_text)

    try:
        response = await backend.summarize(records)
    except AnalysisClientError as e:
        logger.error(f"[{session_id}] Summary failed: {e}")
        detail = str(e)[: config.summary_error_chars]
        return SummaryOutcome(summary=None, message=f"Summary Error: {detail}.", called_service=True)

    summary = build_summary(records, response)
    try:
        history.add(summary)
    except OSError as e:
        logger.error(f"[{session_id}] Could not persist summary: {e}", exc_info=True)
        detail = str(e)[: config.summary_error_chars]
        return SummaryOutcome(summary=None, message=f"Summary Error: {detail}.", called_service=True)
    logger.info(
        f"[{session_id}] Summary saved — {summary.duration_minutes} min, "
        f"avg HR {summary.average_heart_rate}, {len(records)} analyses"
    )
    return SummaryOutcome(
        summary=summary,
        message=f"Summary saved to History: {summary.headline}",
        called_service=True,
    )
