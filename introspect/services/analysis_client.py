"""
IntroSpect — Analysis Client

Stateless request/response wrapper around the remote analysis service:

  POST /analyze?contentMode=…   per-tick vitals + frame → insight
  POST /summary                 session buffer → summary text + stats
  POST /tts                     insight text → base64 audio

Each call is one HTTP round trip. No retries, no caching. Every failure is
raised as an AnalysisClientError subclass so callers can tell a dead link
(AnalysisTransportError) from a body they could not understand
(AnalysisDecodeError).
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..core.config import ApiConfig, api_cfg
from ..core.models import AnalysisRecord, Sample
from ..core.schemas import AnalyzeResponse, SummaryResponse, TTSBatchResponse

logger = logging.getLogger("introspect.client")

_M = TypeVar("_M", bound=BaseModel)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class AnalysisClientError(Exception):
    """Base class for every analysis-service failure."""


class AnalysisTransportError(AnalysisClientError):
    """Network failure or non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AnalysisDecodeError(AnalysisClientError):
    """Response body was not valid JSON or did not match the schema."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class AnalysisClient:
    """
    Async client for the analysis service.

    Usage:
        async with AnalysisClient() as client:
            resp = await client.analyze([sample], content_mode="quantitative")
    """

    def __init__(
        self,
        config: ApiConfig = api_cfg,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._cfg = config
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "AnalysisClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ── Public API ──────────────────────────────────────────────────────

    async def analyze(self, samples: Sequence[Sample], content_mode: str) -> AnalyzeResponse:
        body = [s.to_wire() for s in samples]
        return await self._post(
            "/analyze", body, AnalyzeResponse, params={"contentMode": content_mode}
        )

    async def summarize(self, records: Sequence[AnalysisRecord]) -> SummaryResponse:
        body = [r.to_wire() for r in records]
        logger.info(f"Sending summary request ({len(body)} analyses)")
        return await self._post("/summary", body, SummaryResponse)

    async def speak(self, text: str, voice_id: Optional[str] = None) -> Optional[str]:
        # One-element batch so the service answers with JSON + base64, not raw audio
        body = [{"text": text, "voice": voice_id or self._cfg.voice_id}]
        resp = await self._post("/tts", body, TTSBatchResponse)
        if not resp.results:
            return None
        first = resp.results[0]
        if first.error:
            logger.warning(f"TTS service reported: {first.error}")
        return first.audio or None

    # ── Transport ──────────────────────────────────────────────────────

    async def _post(
        self,
        path: str,
        body: List[Any],
        model: Type[_M],
        params: Optional[dict] = None,
    ) -> _M:
        t0 = time.perf_counter()
        try:
            r = await self._http.post(path, json=body, params=params)
        except httpx.HTTPError as e:
            raise AnalysisTransportError(f"POST {path} failed: {e}") from e

        elapsed = (time.perf_counter() - t0) * 1000
        logger.debug(f"POST {path} → {r.status_code} in {elapsed:.1f}ms")

        if not r.is_success:
            snippet = r.text[: self._cfg.error_body_chars]
            logger.warning(f"POST {path} returned {r.status_code}: {snippet}")
            raise AnalysisTransportError(
                f"POST {path} returned HTTP {r.status_code}",
                status_code=r.status_code,
                body=snippet,
            )

        try:
            data = r.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise AnalysisDecodeError(f"POST {path}: body is not JSON") from e

        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise AnalysisDecodeError(
                f"POST {path}: unexpected body ({e.error_count()} schema errors)"
            ) from e
