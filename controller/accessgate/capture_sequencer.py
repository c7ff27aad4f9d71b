"""Guided multi-angle photo capture for member enrollment."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from .config import EnrollmentSettings
from .errors import CaptureAbortedError, FrameCaptureError, SequencerBusyError, ValidationError
from .models import DEFAULT_ANGLES, CaptureAngle, EnrollmentCapture, Frame
from .sensors.frame_source import FrameSource

logger = logging.getLogger(__name__)

CaptureFn = Callable[[], Awaitable[Optional[Frame]]]
QualityCheck = Callable[[Frame], bool]
ProgressHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


def validate_enrollment(capture: EnrollmentCapture) -> None:
    """Raise ValidationError unless there is exactly one frame per required angle, in order."""
    if not capture.is_complete:
        raise ValidationError(
            log_message=(
                f"enrollment incomplete: captured={capture.angle_sequence} "
                f"missing={capture.missing_angles()}"
            )
        )


class CaptureSequencer:
    """Walks the operator through each pose: instruction, countdown, shutter, quality check.

    A frame that fails the quality check is discarded and the *same* angle is
    captured again, so the finished sequence always keeps the angle order.
    Only one sequence may run at a time.
    """

    def __init__(
        self,
        settings: Optional[EnrollmentSettings] = None,
        *,
        on_progress: Optional[ProgressHandler] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.settings = settings or EnrollmentSettings()
        self._on_progress = on_progress
        self._sleep = sleep
        self._running = False
        self._cancel_requested = False

    @property
    def running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Abort the running sequence at its next pause (retake / cancel)."""
        if self._running:
            logger.info("📸 Capture sequence cancel requested")
            self._cancel_requested = True

    async def capture_from(
        self,
        source: FrameSource,
        quality_check: QualityCheck,
        angles: Sequence[CaptureAngle] = DEFAULT_ANGLES,
    ) -> EnrollmentCapture:
        """Run a full sequence while holding the frame source exclusively."""
        await source.acquire(self)
        try:
            return await self.run_enrollment(angles, source.capture, quality_check)
        finally:
            await source.release(self)

    async def run_enrollment(
        self,
        angles: Sequence[CaptureAngle],
        capture: CaptureFn,
        quality_check: QualityCheck,
    ) -> EnrollmentCapture:
        if self._running:
            raise SequencerBusyError()
        self._running = True
        self._cancel_requested = False
        result = EnrollmentCapture(required=tuple(angles))
        total = len(result.required)
        logger.info(f"📸 Starting enrollment capture ({total} angles)")
        try:
            for index, angle in enumerate(result.required):
                frame = await self._capture_angle(angle, index, total, capture, quality_check, result)
                result.add(angle, frame)
                logger.info(f"✅ {angle.label} captured ({index + 1}/{total}, {frame.size} bytes)")
                await self._emit("captured", angle=angle.id, label=angle.label, index=index, total=total)
                await self._pause(self.settings.confirm_pause_seconds)

            await self._emit("complete", angles=result.angle_sequence, retries=dict(result.retries))
            logger.info(f"📸 All {total} angles captured (retries={result.retries})")
            return result
        finally:
            self._running = False
            self._cancel_requested = False

    async def _capture_angle(
        self,
        angle: CaptureAngle,
        index: int,
        total: int,
        capture: CaptureFn,
        quality_check: QualityCheck,
        result: EnrollmentCapture,
    ) -> Frame:
        limit = self.settings.max_retries_per_angle or None
        while True:
            await self._emit("instruction", angle=angle.id, label=angle.label, instruction=angle.instruction,
                             index=index, total=total)
            for remaining in range(self.settings.countdown_steps, 0, -1):
                await self._emit("countdown", angle=angle.id, remaining=remaining)
                await self._pause(self.settings.countdown_interval_seconds)
            await self._pause(self.settings.capture_pause_seconds)

            frame = await self._grab(capture)
            if frame is not None and quality_check(frame):
                return frame

            retries = result.note_retry(angle)
            logger.warning(f"⚠️ Poor quality, retaking {angle.label} (retry {retries})")
            await self._emit("retry", angle=angle.id, label=angle.label, retries=retries)
            if limit is not None and retries > limit:
                raise CaptureAbortedError(
                    f"Could not capture a clear {angle.label} photo. Please check the camera.",
                    log_message=f"{angle.id}: exceeded {limit} quality retries",
                )

    async def _grab(self, capture: CaptureFn) -> Optional[Frame]:
        try:
            return await capture()
        except FrameCaptureError as exc:
            logger.warning("Frame capture failed: %s", exc)
            return None

    async def _pause(self, seconds: float) -> None:
        self._check_cancelled()
        if seconds > 0:
            await self._sleep(seconds)
        self._check_cancelled()

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise CaptureAbortedError(log_message="capture sequence cancelled by operator")

    async def _emit(self, event: str, **data: Any) -> None:
        if self._on_progress is None:
            return
        try:
            await self._on_progress(event, data)
        except Exception as e:
            logger.warning("Capture progress handler failed: %s", e)


__all__ = ["CaptureSequencer", "validate_enrollment"]
