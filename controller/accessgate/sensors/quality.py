"""Enrollment frame quality checks."""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

try:
    import cv2  # type: ignore
except Exception:
    cv2 = None

from ..config import EnrollmentSettings
from ..models import Frame

logger = logging.getLogger(__name__)


def focus_score(frame: Frame) -> Optional[float]:
    """Variance of the Laplacian; higher is sharper. ``None`` if the frame cannot be decoded."""
    if cv2 is None:
        return None
    try:
        buffer = np.frombuffer(frame.data, dtype=np.uint8)
        gray = cv2.imdecode(buffer, cv2.IMREAD_GRAYSCALE)
        if gray is None:
            return None
        return float(cv2.Laplacian(gray, cv2.CV_64F).var())
    except Exception:  # pragma: no cover - focus metric is best effort
        logger.exception("Failed to compute focus metric")
        return None


class FrameQualityCheck:
    """Rejects tiny (blank / truncated) frames and, optionally, blurry ones."""

    def __init__(self, min_bytes: int = 1000, min_focus: float = 0.0) -> None:
        self.min_bytes = min_bytes
        self.min_focus = min_focus

    @classmethod
    def from_settings(cls, settings: EnrollmentSettings) -> "FrameQualityCheck":
        return cls(min_bytes=settings.min_frame_bytes, min_focus=settings.min_focus)

    def __call__(self, frame: Frame) -> bool:
        if frame.size < self.min_bytes:
            logger.debug("Frame rejected: %d bytes < %d", frame.size, self.min_bytes)
            return False
        if self.min_focus <= 0:
            return True
        score = focus_score(frame)
        if score is None or score < self.min_focus:
            logger.debug("Frame rejected: focus=%s < %.1f", score, self.min_focus)
            return False
        return True


__all__ = ["FrameQualityCheck", "focus_score"]
