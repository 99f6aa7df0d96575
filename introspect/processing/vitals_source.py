"""
IntroSpect — Vitals Sources

`LatestReadingChannel` is the hand-off point between a capture source and
the session controller. It holds exactly one reading (most-recent-wins,
no backlog); publishes from foreign threads are marshalled onto the
owning event loop so the controller's loop stays the single writer.

`SimulatedVitalsSource` streams plausible pulse/breath values and synthetic
frames for demo use when no real capture SDK is wired in.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from typing import Optional

import numpy as np

from ..core.config import SimulationConfig, simulation_cfg
from ..core.models import VitalsReading

logger = logging.getLogger("introspect.vitals")


class LatestReadingChannel:
    """Single-slot, most-recent-wins reading buffer."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._owner_thread = threading.get_ident() if loop is not None else None
        self._latest: Optional[VitalsReading] = None
        self._published = 0

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach to the loop that reads from this channel."""
        self._loop = loop
        self._owner_thread = threading.get_ident()

    def publish(self, reading: VitalsReading) -> None:
        """Store a reading, replacing whatever was there. Safe from any thread."""
        if (
            self._loop is not None
            and self._owner_thread is not None
            and threading.get_ident() != self._owner_thread
        ):
            self._loop.call_soon_threadsafe(self._set, reading)
            return
        self._set(reading)

    def _set(self, reading: VitalsReading) -> None:
        self._latest = reading
        self._published += 1

    def latest(self) -> Optional[VitalsReading]:
        return self._latest

    def clear(self) -> None:
        self._latest = None

    @property
    def published(self) -> int:
        return self._published


class SimulatedVitalsSource:
    """
    Demo capture source for running without a camera.
    Publishes a reading every 1/fps seconds while started.
    """

    def __init__(
        self,
        config: SimulationConfig = simulation_cfg,
        channel: Optional[LatestReadingChannel] = None,
    ) -> None:
        self._cfg = config
        self._channel = channel or LatestReadingChannel()
        self._task: Optional[asyncio.Task] = None
        self._active = False
        self._started_at: float = 0.0

    @property
    def is_active(self) -> bool:
        return self._active

    async def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._started_at = time.time()
        self._channel.bind(asyncio.get_running_loop())
        self._channel.clear()
        self._task = asyncio.create_task(self._worker(), name="vitals-sim")
        logger.info("Simulated vitals source started")

    async def stop(self) -> None:
        self._active = False
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Simulated vitals source stopped")

    def latest(self) -> Optional[VitalsReading]:
        return self._channel.latest()

    def reading(self) -> VitalsReading:
        """Build one synthetic reading for the current instant."""
        t = time.time()
        elapsed = t - self._started_at
        pulse = self._cfg.base_pulse + 6 * np.sin(elapsed * 0.1) + random.uniform(-2, 2)
        breath = self._cfg.base_breath + 2 * np.sin(elapsed * 0.05) + random.uniform(-1, 1)
        return VitalsReading(
            pulse_rate=int(round(pulse)),
            breath_rate=int(round(breath)),
            timestamp=round(elapsed, 2),
            frame=self._frame(elapsed),
        )

    def _frame(self, elapsed: float) -> np.ndarray:
        h, w = self._cfg.frame_height, self._cfg.frame_width
        shade = int(120 + 60 * np.sin(elapsed))
        frame = np.full((h, w, 3), shade, dtype=np.uint8)
        # Noise so the JPEG is not trivially flat
        noise = np.random.randint(0, 20, size=(h, w, 1), dtype=np.uint8)
        return frame + noise

    async def _worker(self) -> None:
        interval = 1.0 / self._cfg.fps if self._cfg.fps > 0 else 0.5
        while self._active:
            try:
                self._channel.publish(self.reading())
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
