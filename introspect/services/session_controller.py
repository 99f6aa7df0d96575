"""
IntroSpect — Session Controller

================================================================================
SESSION LIFECYCLE — IDLE → RECORDING → SUMMARIZING → IDLE
================================================================================

1. START: the AnalysisRecord buffer is cleared, the vitals source is started
   and a timer task is armed at `tick_interval` seconds. start() and stop()
   share one lock: an overlapping start() waits its turn, then finds the
   session already RECORDING and returns False.

2. TICK: every firing reads the LATEST vitals reading (never a backlog),
   encodes the frame off the event loop, and POSTs a one-element batch to
   /analyze. The result is appended to the buffer and pushed to live
   feedback. Spoken feedback is requested only when audio is enabled and the
   insight text differs from the last one spoken this session.

3. OVERLAP: a tick is its own task, so a slow response never blocks the
   timer. If the previous tick is still in flight when the timer fires, that
   firing is skipped and counted. At most one analyze request is ever
   outstanding.

4. FAILURE: transport/decode errors abandon the current tick only. The timer
   keeps running; there is no retry inside a tick.

5. STOP: timer disarmed, source stopped, the in-flight tick (if any) awaited,
   then the summary pipeline runs exactly once. Whatever happens the
   controller ends in IDLE with an empty buffer.

All state is mutated on one event loop; that loop is the only writer.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
import string
import time
import uuid
from typing import Any, Callable, List, Optional, Tuple

from ..core.config import CodecConfig, SessionConfig, codec_cfg, session_cfg
from ..core.interfaces import AnalysisBackend, AudioPlayer, HistoryStore, VitalsSource
from ..core.models import (
    AnalysisRecord,
    FeedbackSettings,
    LiveFeedback,
    Sample,
    SampledMetrics,
    SessionSummary,
    SessionTelemetry,
)
from ..core.state_machine import SessionState, SessionStateMachine
from ..processing.image_codec import encode_frame
from ..processing.summary import SummaryOutcome, run_summary_pipeline
from .analysis_client import AnalysisClientError
from .audio import NullAudioPlayer

logger = logging.getLogger("introspect.session")


class SessionController:
    """
    Owns one monitoring screen's session state.

    Lifecycle:
        controller = SessionController(backend, source, history, settings=...)
        await controller.start()
        # ... ticks run every tick_interval seconds ...
        outcome = await controller.stop()
    """

    def __init__(
        self,
        backend: AnalysisBackend,
        source: VitalsSource,
        history: HistoryStore,
        settings: Optional[FeedbackSettings] = None,
        player: Optional[AudioPlayer] = None,
        config: SessionConfig = session_cfg,
        codec: CodecConfig = codec_cfg,
        voice_id: Optional[str] = None,
        on_feedback: Optional[Callable[[LiveFeedback], Any]] = None,
        on_summary: Optional[Callable[[SessionSummary], Any]] = None,
    ) -> None:
        self._backend = backend
        self._source = source
        self._history = history
        self.settings = settings or FeedbackSettings()
        self._player = player or NullAudioPlayer()
        self._cfg = config
        self._codec = codec
        self._voice_id = voice_id

        self._on_feedback = on_feedback
        self._on_summary = on_summary

        self._state_machine = SessionStateMachine()
        self._records: List[AnalysisRecord] = []
        self._last_spoken: str = ""
        self._feedback = LiveFeedback(
            insight=config.waiting_text, expression=config.neutral_expression
        )

        self.session_id = ""
        self.telemetry = SessionTelemetry()
        self._started_at: Optional[float] = None

        self._timer_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        # Held across start() and stop() so their awaits never interleave
        self._lifecycle_lock = asyncio.Lock()

    # ── Read-only views ─────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state_machine.state

    @property
    def is_recording(self) -> bool:
        return self.state == SessionState.RECORDING

    @property
    def records(self) -> Tuple[AnalysisRecord, ...]:
        return tuple(self._records)

    @property
    def feedback(self) -> LiveFeedback:
        return self._feedback

    @property
    def last_spoken(self) -> str:
        return self._last_spoken

    def status(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "buffered_analyses": len(self._records),
            "feedback": self._feedback.to_dict(),
            "telemetry": self.telemetry.to_dict(),
            "started_at": self._started_at,
            "transitions": [c.to_dict() for c in self._state_machine.recent()],
        }

    # ── Start ───────────────────────────────────────────────────────────

    async def start(self) -> bool:
        """IDLE → RECORDING. Returns False (no-op) from any other state."""
        async with self._lifecycle_lock:
            return await self._start_locked()

    async def _start_locked(self) -> bool:
        if self.state != SessionState.IDLE:
            logger.warning(f"[{self.session_id}] start() ignored in state {self.state.value}")
            return False

        session_id = str(uuid.uuid4())[:12]
        self._records.clear()
        self._last_spoken = ""

        # Source failures propagate with the controller still IDLE
        await self._source.start()

        self.session_id = session_id
        self.telemetry = SessionTelemetry(session_id=session_id)
        self._started_at = time.time()
        self._state_machine.transition(SessionState.RECORDING, session_id)

        await self._set_feedback(self._cfg.waiting_text, self._cfg.neutral_expression)

        self._timer_task = asyncio.create_task(
            self._timer_worker(), name=f"timer-{session_id}"
        )
        logger.info(
            f"[{session_id}] Session started — tick every {self._cfg.tick_interval}s, "
            f"content_mode='{self.settings.content_mode}'"
        )
        return True

    # ── Timer ───────────────────────────────────────────────────────────

    async def _timer_worker(self) -> None:
        session_id = self.session_id
        while self.state == SessionState.RECORDING:
            try:
                await asyncio.sleep(self._cfg.tick_interval)
                if self.state != SessionState.RECORDING or self.session_id != session_id:
                    break

                if self._tick_task is not None and not self._tick_task.done():
                    self.telemetry.ticks_skipped += 1
                    logger.debug(f"[{self.session_id}] Previous tick in flight — skipping")
                    continue

                self._tick_task = asyncio.create_task(
                    self._run_tick(), name=f"tick-{self.session_id}"
                )
            except asyncio.CancelledError:
                break

    async def _run_tick(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            self.telemetry.ticks_failed += 1
            logger.error(f"[{self.session_id}] Tick error: {e}", exc_info=True)

    # ── Tick ────────────────────────────────────────────────────────────

    async def tick(self) -> Optional[AnalysisRecord]:
        """
        One sample → analyze cycle. Returns the appended record, or None
        when the tick was a no-op or failed.
        """
        if self.state != SessionState.RECORDING:
            return None

        self.telemetry.ticks_fired += 1

        reading = self._source.latest()
        if reading is None or reading.frame is None:
            self.telemetry.ticks_without_frame += 1
            logger.debug(f"[{self.session_id}] No frame yet — tick skipped")
            return None

        loop = asyncio.get_running_loop()
        image = await loop.run_in_executor(
            None, encode_frame, reading.frame, self._codec.max_dimension, self._codec.quality
        )
        if image is None:
            self.telemetry.ticks_without_frame += 1
            logger.debug(f"[{self.session_id}] Frame could not be encoded — tick skipped")
            return None

        sample = Sample(
            pulse_rate=reading.pulse_rate,
            breath_rate=reading.breath_rate,
            timestamp=float(reading.timestamp),
            image=image,
        )

        t0 = time.perf_counter()
        try:
            response = await self._backend.analyze([sample], self.settings.content_mode)
        except AnalysisClientError as e:
            self.telemetry.ticks_failed += 1
            logger.warning(f"[{self.session_id}] Analyze request failed: {e}")
            await self._set_feedback(self._cfg.connection_error_text, self._cfg.error_expression)
            return None
        self.telemetry.last_analyze_latency_ms = round((time.perf_counter() - t0) * 1000, 1)

        if not response.results:
            logger.debug(f"[{self.session_id}] Analyze returned no results")
            return None

        result = response.results[0]
        record = AnalysisRecord(
            analysis=result.analysis,
            expression=result.expression,
            timestamp=result.timestamp,
            error=result.error,
            metrics=SampledMetrics(heart_rate=sample.pulse_rate, breath_rate=sample.breath_rate),
        )
        self._records.append(record)
        self.telemetry.analyses_recorded += 1

        if result.error is not None:
            self.telemetry.application_errors += 1
            logger.info(f"[{self.session_id}] Service reported analysis error: {result.error}")
            await self._set_feedback(f"Analysis Error: {result.error}", self._cfg.error_expression)
            return record

        insight = result.analysis or self._cfg.no_insight_text
        expression = (
            string.capwords(result.expression) if result.expression else self._cfg.neutral_expression
        )
        await self._set_feedback(insight, expression)

        if self.state == SessionState.RECORDING:
            # The "No insights available." placeholder is shown but never spoken
            await self._maybe_speak(result.analysis or "")

        return record

    async def _maybe_speak(self, text: str) -> bool:
        """Speak `text` unless audio is off, it is empty, or it was just spoken."""
        if not self.settings.audio_enabled or not text or text == self._last_spoken:
            return False

        try:
            logger.info(f"[{self.session_id}] Fetching TTS for: {text[:80]}")
            audio = await self._backend.speak(text, self._voice_id)
        except AnalysisClientError as e:
            logger.warning(f"[{self.session_id}] TTS request failed: {e}")
            return False

        if audio is None:
            return False

        # FileAudioPlayer writes to disk
        await asyncio.get_running_loop().run_in_executor(None, self._player.play_base64, audio)
        self._last_spoken = text
        self.telemetry.speech_played += 1
        return True

    # ── Stop ────────────────────────────────────────────────────────────

    async def stop(self) -> Optional[SummaryOutcome]:
        """
        RECORDING → SUMMARIZING → IDLE. No-op (None) when not recording.
        """
        async with self._lifecycle_lock:
            return await self._stop_locked()

    async def _stop_locked(self) -> Optional[SummaryOutcome]:
        if self.state != SessionState.RECORDING:
            logger.debug(f"stop() ignored in state {self.state.value}")
            return None

        session_id = self.session_id
        self._state_machine.transition(SessionState.SUMMARIZING, session_id)
        outcome: Optional[SummaryOutcome] = None

        try:
            await self._teardown()
            logger.info(
                f"[{session_id}] Session stopped. Total insights collected: {len(self._records)}"
            )

            await self._set_feedback(self._cfg.generating_text, self._cfg.neutral_expression)

            outcome = await run_summary_pipeline(
                list(self._records),
                self._backend,
                self._history,
                config=self._cfg,
                session_id=session_id,
            )
            await self._set_feedback(outcome.message, self._cfg.neutral_expression)

            if outcome.summary is not None and self._on_summary:
                await self._emit(self._on_summary, outcome.summary)
        finally:
            self._records.clear()
            self._timer_task = None
            self._tick_task = None
            self._state_machine.transition(SessionState.IDLE, session_id)

        return outcome

    async def _teardown(self) -> None:
        """Disarm timer, stop capture, drain the in-flight tick."""
        timer, self._timer_task = self._timer_task, None
        if timer and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass

        try:
            await self._source.stop()
        except Exception as e:
            logger.error(f"[{self.session_id}] Vitals source stop failed: {e}", exc_info=True)

        tick = self._tick_task
        if tick and not tick.done():
            logger.info(f"[{self.session_id}] Waiting for in-flight tick")
            try:
                await tick
            except Exception as e:
                logger.error(f"[{self.session_id}] In-flight tick crashed: {e}", exc_info=True)

    # ── Feedback plumbing ───────────────────────────────────────────────

    async def _set_feedback(self, insight: str, expression: str) -> None:
        self._feedback = LiveFeedback(insight=insight, expression=expression)
        if self._on_feedback:
            await self._emit(self._on_feedback, self._feedback)

    async def _emit(self, callback: Callable[[Any], Any], payload: Any) -> None:
        try:
            cb = callback(payload)
            if asyncio.iscoroutine(cb):
                await cb
        except Exception as e:
            logger.error(f"[{self.session_id}] Callback error: {e}")
