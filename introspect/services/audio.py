"""
IntroSpect — Audio Playback

Spoken insights arrive from /tts as base64 MP3. `decode_audio` cleans and
decodes them; `FileAudioPlayer` hands each decoded clip to disk (stand-in
for a hardware player). `NullAudioPlayer` accepts everything and plays
nothing.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger("introspect.audio")

_DATA_URI_PREFIX = "data:audio/mpeg;base64,"
_NON_B64 = re.compile(r"[^A-Za-z0-9+/=]")


def decode_audio(audio_b64: str) -> Optional[bytes]:
    """Strip a data-URI prefix, ignore stray characters, decode. None on failure."""
    clean = audio_b64.replace(_DATA_URI_PREFIX, "")
    clean = _NON_B64.sub("", clean)
    if not clean:
        return None
    # Lenient about missing padding
    clean += "=" * (-len(clean) % 4)
    try:
        return base64.b64decode(clean)
    except (binascii.Error, ValueError):
        return None


class NullAudioPlayer:

    def play_base64(self, audio_b64: str) -> bool:
        return decode_audio(audio_b64) is not None


class FileAudioPlayer:
    """Writes each played clip to `<output_dir>/<n>-<ms>.mp3`."""

    def __init__(self, output_dir: str | Path) -> None:
        self._dir = Path(output_dir)
        self._count = 0
        self.last_path: Optional[Path] = None

    @property
    def clips_played(self) -> int:
        return self._count

    def play_base64(self, audio_b64: str) -> bool:
        data = decode_audio(audio_b64)
        if data is None:
            logger.error("Failed to decode base64 audio")
            return False
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self._count += 1
            path = self._dir / f"{self._count:04d}-{int(time.time() * 1000)}.mp3"
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Error writing audio clip: {e}")
            return False
        self.last_path = path
        logger.info(f"Played audio clip ({len(data)} bytes) → {path.name}")
        return True
