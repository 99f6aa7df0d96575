"""
IntroSpect — Configuration

Centralised settings from environment variables.
Tuneable constants for every module are defined here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv
import certifi

os.environ.setdefault("SSL_CERT_FILE", certifi.where())

load_dotenv()


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))
    cors_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    )
    # Where the JSON history store lives (empty = in-memory only)
    history_path: str = os.getenv("INTROSPECT_HISTORY_PATH", "")
    # Directory the file audio player drops decoded clips into
    audio_dir: str = os.getenv("INTROSPECT_AUDIO_DIR", "audio_out")


# ---------------------------------------------------------------------------
# Remote analysis service
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ApiConfig:
    """Analysis / summary / TTS service endpoint."""
    base_url: str = os.getenv("INTROSPECT_API_URL", "http://localhost:8787")
    # Per-request timeout (seconds); no retries anywhere
    timeout: float = float(os.getenv("INTROSPECT_API_TIMEOUT", "30"))
    voice_id: str = os.getenv("INTROSPECT_VOICE_ID", "pNInz6obpgDQGcFmaJgB")
    # Max chars of an error body kept for diagnostics
    error_body_chars: int = 500


# ---------------------------------------------------------------------------
# Session tunables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionConfig:
    # Seconds between analyze ticks
    tick_interval: float = float(os.getenv("INTROSPECT_TICK_INTERVAL", "3.0"))
    waiting_text: str = "Waiting for live analysis..."
    generating_text: str = "Session stopped. Generating summary..."
    no_data_text: str = "Session stopped. No data collected."
    connection_error_text: str = "Connection Error..."
    no_insight_text: str = "No insights available."
    neutral_expression: str = "Neutral"
    error_expression: str = "Error"
    # Chars of a summary error echoed back to the user
    summary_error_chars: int = 50


# ---------------------------------------------------------------------------
# Image codec
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CodecConfig:
    # Longer edge of the uploaded frame, in pixels
    max_dimension: int = 480
    # JPEG quality factor 0.0–1.0
    quality: float = 0.4


# ---------------------------------------------------------------------------
# Simulated vitals source
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SimulationConfig:
    # Readings published per second by the demo source
    fps: float = 2.0
    frame_width: int = 640
    frame_height: int = 480
    base_pulse: int = 72
    base_breath: int = 14


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

server_cfg = ServerConfig()
api_cfg = ApiConfig()
session_cfg = SessionConfig()
codec_cfg = CodecConfig()
simulation_cfg = SimulationConfig()
