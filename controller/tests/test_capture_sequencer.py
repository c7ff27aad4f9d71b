from __future__ import annotations

import asyncio

import pytest

from accessgate.capture_sequencer import CaptureSequencer, validate_enrollment
from accessgate.config import EnrollmentSettings
from accessgate.errors import (
    CaptureAbortedError,
    FrameCaptureError,
    ResourceUnavailableError,
    SequencerBusyError,
    ValidationError,
)
from accessgate.models import CENTER, DEFAULT_ANGLES, LEFT, EnrollmentCapture
from accessgate.sensors.quality import FrameQualityCheck

from conftest import FakeFrameSource, jpeg_frame, settle


class InstantSleep:
    def __init__(self) -> None:
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Script:
    """Capture callable returning frames in order; good frames are large, bad ones tiny."""

    def __init__(self, *frames):
        self.frames = list(frames)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        item = self.frames.pop(0) if self.frames else jpeg_frame()
        if isinstance(item, BaseException):
            raise item
        return item


def bad_frame():
    return jpeg_frame(size=10)


def good_frame(tag: bytes):
    return jpeg_frame(tag=tag)


async def test_sequence_keeps_angle_order_through_retries():
    script = Script(
        good_frame(b"center"),
        good_frame(b"left"),
        bad_frame(),
        bad_frame(),
        good_frame(b"right"),
        good_frame(b"up"),
        good_frame(b"down"),
    )
    sequencer = CaptureSequencer(sleep=InstantSleep())

    capture = await sequencer.run_enrollment(DEFAULT_ANGLES, script, FrameQualityCheck())

    assert capture.angle_sequence == ["center", "left", "right", "up", "down"]
    assert [frame.data[2:2 + len(angle.id)] for angle, frame in capture.shots] == [
        b"center", b"left", b"right", b"up", b"down"
    ]
    assert capture.retries == {"right": 2}
    assert script.calls == 7
    assert capture.is_complete
    assert not sequencer.running


async def test_each_attempt_counts_down_then_waits_for_the_shutter():
    sleep = InstantSleep()
    sequencer = CaptureSequencer(sleep=sleep)

    await sequencer.run_enrollment((CENTER,), Script(bad_frame(), jpeg_frame()), FrameQualityCheck())

    assert sleep.delays == [1.0, 1.0, 1.0, 0.3, 1.0, 1.0, 1.0, 0.3, 0.8]


async def test_progress_events_follow_the_operator_flow():
    events = []

    async def on_progress(event, data):
        events.append((event, data))

    sequencer = CaptureSequencer(on_progress=on_progress, sleep=InstantSleep())
    await sequencer.run_enrollment((CENTER, LEFT), Script(), FrameQualityCheck())

    names = [name for name, _ in events]
    assert names == [
        "instruction", "countdown", "countdown", "countdown", "captured",
        "instruction", "countdown", "countdown", "countdown", "captured",
        "complete",
    ]
    assert events[0][1]["instruction"] == "Look DIRECTLY at the camera"
    assert [data["remaining"] for name, data in events[1:4]] == [3, 2, 1]
    assert events[-1][1]["angles"] == ["center", "left"]


async def test_broken_progress_handler_does_not_stop_capture():
    async def on_progress(event, data):
        raise RuntimeError("ui gone")

    sequencer = CaptureSequencer(on_progress=on_progress, sleep=InstantSleep())
    capture = await sequencer.run_enrollment((CENTER,), Script(), FrameQualityCheck())

    assert capture.angle_sequence == ["center"]


async def test_gives_up_after_retry_limit():
    sequencer = CaptureSequencer(EnrollmentSettings(max_retries_per_angle=2), sleep=InstantSleep())
    script = Script(*[bad_frame() for _ in range(5)])

    with pytest.raises(CaptureAbortedError) as info:
        await sequencer.run_enrollment((CENTER,), script, FrameQualityCheck())

    assert script.calls == 3
    assert "Center" in info.value.user_message
    assert not sequencer.running


async def test_zero_retry_limit_means_keep_trying():
    sequencer = CaptureSequencer(EnrollmentSettings(max_retries_per_angle=0), sleep=InstantSleep())
    script = Script(*[bad_frame() for _ in range(25)], jpeg_frame())

    capture = await sequencer.run_enrollment((CENTER,), script, FrameQualityCheck())

    assert capture.retries == {"center": 25}


async def test_failed_grab_is_treated_as_a_retry():
    sequencer = CaptureSequencer(sleep=InstantSleep())
    script = Script(FrameCaptureError(), None, jpeg_frame())

    capture = await sequencer.run_enrollment((CENTER,), script, FrameQualityCheck())

    assert capture.retries == {"center": 2}


async def test_only_one_sequence_at_a_time(clock):
    sequencer = CaptureSequencer(sleep=clock.sleep)
    first = asyncio.create_task(sequencer.run_enrollment((CENTER,), Script(), FrameQualityCheck()))
    await settle()
    assert sequencer.running

    with pytest.raises(SequencerBusyError):
        await sequencer.run_enrollment((CENTER,), Script(), FrameQualityCheck())

    await clock.advance(5)
    capture = await first
    assert capture.angle_sequence == ["center"]


async def test_cancel_aborts_at_next_pause(clock):
    sequencer = CaptureSequencer(sleep=clock.sleep)
    script = Script()
    task = asyncio.create_task(sequencer.run_enrollment(DEFAULT_ANGLES, script, FrameQualityCheck()))
    await clock.advance(1.5)

    sequencer.cancel()
    await clock.advance(1)

    with pytest.raises(CaptureAbortedError):
        await task
    assert script.calls == 0
    assert not sequencer.running


async def test_capture_from_holds_the_camera_for_the_whole_sequence(clock):
    camera = FakeFrameSource()
    sequencer = CaptureSequencer(sleep=clock.sleep)
    task = asyncio.create_task(sequencer.capture_from(camera, FrameQualityCheck(), angles=(CENTER, LEFT)))
    await settle()

    assert camera.owner is sequencer
    with pytest.raises(ResourceUnavailableError):
        await camera.acquire(object())

    await clock.advance(20)
    capture = await task

    assert capture.angle_sequence == ["center", "left"]
    assert camera.owner is None
    assert camera.captures == 2


async def test_capture_from_releases_camera_on_abort():
    camera = FakeFrameSource([jpeg_frame(size=1) for _ in range(3)])
    sequencer = CaptureSequencer(EnrollmentSettings(max_retries_per_angle=1), sleep=InstantSleep())

    with pytest.raises(CaptureAbortedError):
        await sequencer.capture_from(camera, FrameQualityCheck(), angles=(CENTER,))

    assert camera.owner is None
    assert camera.closed == 1


def test_validate_enrollment_requires_every_angle_in_order():
    capture = EnrollmentCapture()
    for angle in DEFAULT_ANGLES[:4]:
        capture.add(angle, jpeg_frame())

    with pytest.raises(ValidationError) as info:
        validate_enrollment(capture)
    assert info.value.user_message == "Please capture all 5 photos first"
    assert capture.missing_angles() == ["down"]

    capture.add(DEFAULT_ANGLES[4], jpeg_frame())
    validate_enrollment(capture)


def test_validate_enrollment_rejects_out_of_order_shots():
    capture = EnrollmentCapture()
    for angle in reversed(DEFAULT_ANGLES):
        capture.add(angle, jpeg_frame())

    with pytest.raises(ValidationError):
        validate_enrollment(capture)
