import asyncio
import threading

import pytest

from conftest import FakeSource, RecordingPlayer, analyze_ok, make_reading
from introspect.core.config import SessionConfig
from introspect.core.models import FeedbackSettings, VitalsReading
from introspect.core.state_machine import SessionState
from introspect.services.analysis_client import AnalysisDecodeError, AnalysisTransportError
from introspect.services.history import InMemoryHistoryStore
from introspect.services.session_controller import SessionController

# Timer never fires on its own; tests drive tick() directly
MANUAL = SessionConfig(tick_interval=3600.0)


def _controller(backend, source, player=None, settings=None, history=None, config=MANUAL, **kw):
    return SessionController(
        backend=backend,
        source=source,
        history=history if history is not None else InMemoryHistoryStore(),
        settings=settings or FeedbackSettings(),
        player=player,
        config=config,
        **kw,
    )


@pytest.mark.anyio
async def test_start_resets_feedback_and_starts_source(backend, source):
    ctl = _controller(backend, source)

    assert await ctl.start() is True

    assert ctl.state == SessionState.RECORDING
    assert source.started == 1
    assert ctl.feedback.insight == "Waiting for live analysis..."
    assert ctl.records == ()
    await ctl.stop()


@pytest.mark.anyio
async def test_zero_ticks_emits_no_summary(backend, source):
    history = InMemoryHistoryStore()
    ctl = _controller(backend, source, history=history)

    await ctl.start()
    outcome = await ctl.stop()

    assert outcome is not None and outcome.summary is None
    assert backend.summary_calls == []
    assert len(history) == 0
    assert ctl.records == ()
    assert ctl.state == SessionState.IDLE
    assert ctl.feedback.insight == "Session stopped. No data collected."
    assert source.stopped == 1


@pytest.mark.anyio
async def test_n_successful_ticks_are_all_summarized(backend, source):
    history = InMemoryHistoryStore()
    ctl = _controller(backend, source, history=history)
    await ctl.start()

    for _ in range(4):
        await ctl.tick()
    assert len(ctl.records) == 4

    outcome = await ctl.stop()

    assert len(backend.summary_calls) == 1
    assert len(backend.summary_calls[0]) == 4
    assert ctl.records == ()
    assert outcome.summary is not None
    assert history.list() == [outcome.summary]
    assert outcome.summary.headline == "Good session."
    assert outcome.summary.average_heart_rate == 72
    assert outcome.summary.duration_minutes == 3
    assert ctl.feedback.insight == "Summary saved to History: Good session."


@pytest.mark.anyio
async def test_tick_builds_request_from_latest_sample(backend, source):
    settings = FeedbackSettings(selected_feedback_content="Quantitative")
    ctl = _controller(backend, source, settings=settings)
    await ctl.start()

    record = await ctl.tick()

    samples, content_mode = backend.analyze_calls[0]
    assert content_mode == "quantitative"
    assert len(samples) == 1
    assert samples[0].pulse_rate == 72
    assert samples[0].breath_rate == 14
    assert samples[0].timestamp == 12.5
    assert samples[0].image
    assert record.metrics.heart_rate == 72
    assert record.metrics.breath_rate == 14
    await ctl.stop()


@pytest.mark.anyio
async def test_tick_updates_feedback_with_capitalized_expression(backend, source):
    backend.analyze_queue = [analyze_ok(analysis="You look relaxed.", expression="slightly happy")]
    ctl = _controller(backend, source)
    await ctl.start()

    await ctl.tick()

    assert ctl.feedback.insight == "You look relaxed."
    assert ctl.feedback.expression == "Slightly Happy"
    await ctl.stop()


@pytest.mark.anyio
async def test_tick_without_frame_is_a_noop(backend):
    source = FakeSource(VitalsReading(pulse_rate=70, breath_rate=12, timestamp=1.0, frame=None))
    ctl = _controller(backend, source)
    await ctl.start()

    assert await ctl.tick() is None
    source.reading = None
    assert await ctl.tick() is None

    assert backend.analyze_calls == []
    assert ctl.records == ()
    assert ctl.state == SessionState.RECORDING
    assert ctl.feedback.insight == "Waiting for live analysis..."
    await ctl.stop()


@pytest.mark.anyio
async def test_transport_failure_does_not_stop_later_ticks(backend, source):
    backend.analyze_queue = [
        analyze_ok(analysis="first", timestamp=1.0),
        AnalysisTransportError("POST /analyze returned HTTP 502", status_code=502),
        analyze_ok(analysis="third", timestamp=3.0),
    ]
    ctl = _controller(backend, source)
    await ctl.start()

    await ctl.tick()
    assert ctl.feedback.insight == "first"

    await ctl.tick()
    assert ctl.feedback.insight == "Connection Error..."
    assert ctl.feedback.expression == "Error"
    assert ctl.state == SessionState.RECORDING

    await ctl.tick()
    assert ctl.feedback.insight == "third"

    assert [r.analysis for r in ctl.records] == ["first", "third"]
    assert ctl.telemetry.ticks_failed == 1
    await ctl.stop()


@pytest.mark.anyio
async def test_decode_failure_is_reported_as_connection_error(backend, source):
    backend.analyze_queue = [AnalysisDecodeError("POST /analyze: body is not JSON")]
    ctl = _controller(backend, source)
    await ctl.start()

    assert await ctl.tick() is None

    assert ctl.feedback.insight == "Connection Error..."
    assert ctl.records == ()
    await ctl.stop()


@pytest.mark.anyio
async def test_application_error_is_recorded_and_shown(backend, source, player):
    backend.analyze_queue = [analyze_ok(analysis=None, expression=None, error="no face detected")]
    ctl = _controller(backend, source, player=player)
    await ctl.start()

    record = await ctl.tick()

    assert record.error == "no face detected"
    assert len(ctl.records) == 1
    assert ctl.feedback.insight == "Analysis Error: no face detected"
    assert ctl.feedback.expression == "Error"
    assert backend.speak_calls == []
    await ctl.stop()


@pytest.mark.anyio
async def test_speech_suppresses_only_immediate_repeats(backend, source, player):
    backend.analyze_queue = [
        analyze_ok(analysis="Breathe slowly."),
        analyze_ok(analysis="Breathe slowly."),
        analyze_ok(analysis="Nice posture."),
        analyze_ok(analysis="Breathe slowly."),
    ]
    ctl = _controller(backend, source, player=player)
    await ctl.start()

    for _ in range(4):
        await ctl.tick()

    spoken = [text for text, _ in backend.speak_calls]
    assert spoken == ["Breathe slowly.", "Nice posture.", "Breathe slowly."]
    assert len(player.played) == 3
    assert ctl.last_spoken == "Breathe slowly."
    await ctl.stop()


@pytest.mark.anyio
async def test_speech_requires_audio_format(backend, source, player):
    settings = FeedbackSettings(selected_feedback_formats=frozenset({"Text"}))
    ctl = _controller(backend, source, player=player, settings=settings)
    await ctl.start()

    await ctl.tick()

    assert backend.speak_calls == []
    assert player.played == []
    await ctl.stop()


@pytest.mark.anyio
async def test_empty_analysis_is_not_spoken(backend, source, player):
    backend.analyze_queue = [analyze_ok(analysis="")]
    ctl = _controller(backend, source, player=player)
    await ctl.start()

    await ctl.tick()

    assert ctl.feedback.insight == "No insights available."
    assert backend.speak_calls == []
    await ctl.stop()


@pytest.mark.anyio
async def test_missing_audio_does_not_mark_text_as_spoken(backend, source, player):
    backend.speech_audio = None
    backend.analyze_queue = [analyze_ok(analysis="Hello."), analyze_ok(analysis="Hello.")]
    ctl = _controller(backend, source, player=player)
    await ctl.start()

    await ctl.tick()
    await ctl.tick()

    assert len(backend.speak_calls) == 2
    assert player.played == []
    assert ctl.last_spoken == ""
    await ctl.stop()


@pytest.mark.anyio
async def test_speech_failure_keeps_the_record(backend, source, player):
    backend.speech_error = AnalysisTransportError("POST /tts failed")
    ctl = _controller(backend, source, player=player)
    await ctl.start()

    record = await ctl.tick()

    assert record is not None
    assert len(ctl.records) == 1
    assert player.played == []
    await ctl.stop()


@pytest.mark.anyio
async def test_last_spoken_resets_between_sessions(backend, source, player):
    ctl = _controller(backend, source, player=player)

    await ctl.start()
    await ctl.tick()
    await ctl.stop()

    await ctl.start()
    await ctl.tick()
    await ctl.stop()

    assert len(player.played) == 2


@pytest.mark.anyio
async def test_stop_while_idle_is_a_noop(backend, source):
    history = InMemoryHistoryStore()
    ctl = _controller(backend, source, history=history)

    assert await ctl.stop() is None

    assert ctl.state == SessionState.IDLE
    assert source.stopped == 0
    assert backend.summary_calls == []
    assert len(history) == 0


@pytest.mark.anyio
async def test_start_while_recording_is_ignored(backend, source):
    ctl = _controller(backend, source)
    await ctl.start()
    first_id = ctl.session_id

    assert await ctl.start() is False

    assert ctl.session_id == first_id
    assert source.started == 1
    await ctl.stop()


@pytest.mark.anyio
async def test_summary_failure_still_returns_to_idle(backend, source):
    backend.summary_result = AnalysisTransportError("POST /summary returned HTTP 500", status_code=500)
    history = InMemoryHistoryStore()
    ctl = _controller(backend, source, history=history)
    await ctl.start()
    await ctl.tick()

    outcome = await ctl.stop()

    assert outcome.summary is None
    assert outcome.message.startswith("Summary Error: POST /summary returned HTTP 500")
    assert len(history) == 0
    assert ctl.records == ()
    assert ctl.state == SessionState.IDLE


@pytest.mark.anyio
async def test_tick_after_stop_does_nothing(backend, source):
    ctl = _controller(backend, source)
    await ctl.start()
    await ctl.stop()

    assert await ctl.tick() is None
    assert backend.analyze_calls == []


@pytest.mark.anyio
async def test_feedback_and_summary_callbacks(backend, source):
    seen = []
    summaries = []

    async def on_feedback(fb):
        seen.append(fb.insight)

    ctl = _controller(backend, source, on_feedback=on_feedback, on_summary=summaries.append)
    await ctl.start()
    await ctl.tick()
    await ctl.stop()

    assert seen == [
        "Waiting for live analysis...",
        "Calm and focused.",
        "Session stopped. Generating summary...",
        "Summary saved to History: Good session.",
    ]
    assert len(summaries) == 1


class _SlowBackend:
    """analyze() blocks until released."""

    def __init__(self, inner):
        self.inner = inner
        self.release = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    async def analyze(self, samples, content_mode):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.release.wait()
            return await self.inner.analyze(samples, content_mode)
        finally:
            self.in_flight -= 1

    async def summarize(self, records):
        return await self.inner.summarize(records)

    async def speak(self, text, voice_id=None):
        return await self.inner.speak(text, voice_id)


@pytest.mark.anyio
async def test_timer_skips_firings_while_a_tick_is_in_flight(backend, source):
    slow = _SlowBackend(backend)
    ctl = _controller(slow, source, config=SessionConfig(tick_interval=0.01))
    await ctl.start()

    await asyncio.sleep(0.1)

    assert slow.max_in_flight == 1
    assert ctl.telemetry.ticks_skipped >= 1

    slow.release.set()
    outcome = await ctl.stop()

    assert outcome is not None
    assert ctl.state == SessionState.IDLE


@pytest.mark.anyio
async def test_stop_waits_for_in_flight_tick(backend, source):
    slow = _SlowBackend(backend)
    ctl = _controller(slow, source, config=SessionConfig(tick_interval=0.01))
    await ctl.start()

    while slow.in_flight == 0:
        await asyncio.sleep(0.005)

    stop_task = asyncio.create_task(ctl.stop())
    await asyncio.sleep(0.02)
    assert not stop_task.done()
    assert ctl.state == SessionState.SUMMARIZING

    slow.release.set()
    outcome = await stop_task

    assert len(backend.summary_calls) == 1
    assert len(backend.summary_calls[0]) == 1
    assert outcome.summary is not None
    assert ctl.state == SessionState.IDLE


@pytest.mark.anyio
async def test_timer_drives_ticks(backend, source):
    ctl = _controller(backend, source, config=SessionConfig(tick_interval=0.01))
    await ctl.start()

    while len(ctl.records) < 2:
        await asyncio.sleep(0.005)

    await ctl.stop()
    assert len(backend.summary_calls[0]) >= 2


class _YieldingSource(FakeSource):
    """Source whose start() suspends, like a real capture SDK."""

    async def start(self) -> None:
        await asyncio.sleep(0.01)
        await super().start()


def _timer_tasks():
    return [t for t in asyncio.all_tasks() if t.get_name().startswith("timer-")]


@pytest.mark.anyio
async def test_overlapping_starts_run_a_single_session(backend):
    source = _YieldingSource(make_reading())
    ctl = _controller(backend, source)

    results = await asyncio.gather(ctl.start(), ctl.start())

    assert sorted(results) == [False, True]
    assert source.started == 1
    timers = _timer_tasks()
    assert len(timers) == 1

    await ctl.stop()

    assert all(t.done() for t in timers)
    assert _timer_tasks() == []
    assert ctl.state == SessionState.IDLE
    assert [c["to"] for c in ctl.status()["transitions"]] == ["recording", "summarizing", "idle"]


@pytest.mark.anyio
async def test_stop_during_start_waits_and_cleans_up(backend):
    source = _YieldingSource(make_reading())
    ctl = _controller(backend, source)

    start_task = asyncio.create_task(ctl.start())
    await asyncio.sleep(0)
    outcome = await ctl.stop()

    assert await start_task is True
    assert outcome is not None
    assert source.stopped == 1
    assert ctl.state == SessionState.IDLE
    assert _timer_tasks() == []


class _ThreadTrackingPlayer(RecordingPlayer):

    def __init__(self) -> None:
        super().__init__()
        self.threads = []

    def play_base64(self, audio_b64: str) -> bool:
        self.threads.append(threading.get_ident())
        return super().play_base64(audio_b64)


@pytest.mark.anyio
async def test_audio_playback_runs_off_the_event_loop(backend, source):
    player = _ThreadTrackingPlayer()
    ctl = _controller(backend, source, player=player)
    await ctl.start()
    await ctl.tick()
    await ctl.stop()

    assert player.played == ["SUQzBAAAAAAA"]
    assert player.threads and threading.get_ident() not in player.threads
