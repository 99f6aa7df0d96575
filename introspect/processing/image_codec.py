"""
IntroSpect — Image Codec Adapter

Turns a raw RGB camera frame into a small base64 JPEG for upload.
The longer edge is scaled to `max_dimension` (aspect ratio kept), then the
frame is JPEG-encoded at `quality`. Any failure returns None so the caller
can skip the tick instead of erroring the session.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Optional, Tuple

import cv2
import numpy as np

from ..core.config import codec_cfg

logger = logging.getLogger("introspect.codec")


def scaled_size(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """(width, height) with the longer edge equal to max_dimension."""
    if width > height:
        ratio = max_dimension / width
        return max_dimension, max(1, int(round(height * ratio)))
    ratio = max_dimension / height
    return max(1, int(round(width * ratio))), max_dimension


def encode_frame(
    frame: Any,
    max_dimension: int = codec_cfg.max_dimension,
    quality: float = codec_cfg.quality,
) -> Optional[str]:
    """
    Scale + JPEG-encode an RGB frame (H, W, 3 uint8) and return base64 text.
    Grayscale (H, W) frames are accepted as well.
    """
    if frame is None or max_dimension <= 0:
        return None

    try:
        img = np.asarray(frame)
        if img.ndim not in (2, 3) or img.shape[0] == 0 or img.shape[1] == 0:
            logger.debug(f"Unsupported frame shape: {getattr(img, 'shape', None)}")
            return None
        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)

        h, w = img.shape[:2]
        new_w, new_h = scaled_size(w, h, max_dimension)
        interp = cv2.INTER_AREA if new_w < w else cv2.INTER_LINEAR
        scaled = cv2.resize(img, (new_w, new_h), interpolation=interp)

        if scaled.ndim == 3:
            scaled = cv2.cvtColor(scaled, cv2.COLOR_RGB2BGR)

        jpeg_quality = int(round(min(max(quality, 0.0), 1.0) * 100))
        ok, buf = cv2.imencode(".jpg", scaled, [cv2.IMWRITE_JPEG_QUALITY, jpeg_quality])
        if not ok:
            logger.warning("JPEG encode failed")
            return None

        return base64.b64encode(buf.tobytes()).decode("ascii")

    except cv2.error as e:
        logger.warning(f"Could not scale/encode frame: {e}")
        return None
