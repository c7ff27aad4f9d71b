"""
OpenCV webcam frame source for the scanner and enrollment flows.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

# Optional deps
try:
    import cv2  # type: ignore
except Exception:
    cv2 = None

from ..config import CameraSettings
from ..errors import FrameCaptureError, ResourceUnavailableError
from ..models import Frame
from .frame_source import FrameSource

logger = logging.getLogger(__name__)


class WebcamFrameSource(FrameSource):
    """Webcam-backed frame source; blocking OpenCV calls run in the default executor."""

    def __init__(self, settings: Optional[CameraSettings] = None) -> None:
        super().__init__()
        self.settings = settings or CameraSettings()
        self.enable_hardware = cv2 is not None
        self._cap = None

    async def _open(self) -> None:
        if not self.enable_hardware:
            raise ResourceUnavailableError(
                "No camera support available on this kiosk.",
                log_message="OpenCV not available - webcam disabled",
            )

        logger.info(f"Opening webcam (device_index={self.settings.device_index})")
        loop = asyncio.get_running_loop()
        cap = await loop.run_in_executor(None, self._open_capture)
        if cap is None:
            raise ResourceUnavailableError(
                "Failed to access camera. It may be in use by another application.",
                log_message=f"Failed to open webcam {self.settings.device_index}",
            )
        self._cap = cap
        logger.info("Webcam activated successfully")

    def _open_capture(self):
        cap = cv2.VideoCapture(self.settings.device_index)
        if not cap.isOpened():
            cap.release()
            return None
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.resolution_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.resolution_height)
        return cap

    async def _close(self) -> None:
        if self._cap is None:
            return
        logger.info("Closing webcam")
        cap, self._cap = self._cap, None
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, cap.release)
        logger.info("Webcam deactivated")

    async def _read_frame(self) -> Optional[Frame]:
        if self._cap is None:
            raise FrameCaptureError(log_message="webcam not open")
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, self._grab_jpeg)
        if data is None:
            return None
        return Frame(data=data, captured_at=time.time())

    def _grab_jpeg(self) -> Optional[bytes]:
        cap = self._cap
        if cap is None or not cap.isOpened():
            return None
        ret, image = cap.read()
        if not ret or image is None:
            logger.debug("Webcam returned no frame (not ready yet)")
            return None
        success, encoded = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self.settings.jpeg_quality])
        if not success:
            logger.warning("Failed to encode webcam frame as JPEG")
            return None
        return encoded.tobytes()


__all__ = ["WebcamFrameSource"]
