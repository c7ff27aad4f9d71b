"""Shared fakes: a manual clock, a scriptable camera and a scriptable matcher."""
from __future__ import annotations

import asyncio
import heapq
import itertools
import os
import tempfile
from typing import Any, List, Optional

os.environ.setdefault("BACKEND_API_URL", "http://backend.test")
os.environ.setdefault("LOG_DIRECTORY", tempfile.mkdtemp(prefix="accessgate-logs-"))

import pytest
import pytest_asyncio

from accessgate.config import ScanSettings
from accessgate.errors import ResourceUnavailableError
from accessgate.models import Frame, VerificationOutcome
from accessgate.sensors.frame_source import FrameSource
from accessgate.session_controller import VerificationSessionController


async def settle(rounds: int = 50) -> None:
    """Let every ready task run until the loop goes quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ManualClock:
    """Drop-in for ``asyncio.sleep`` whose time only moves on ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: List[Any] = []
        self._seq = itertools.count()
        self.sleeps: List[float] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._timers, (self.now + max(delay, 0.0), next(self._seq), future))
        await future

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await settle()
        while self._timers and self._timers[0][0] <= target + 1e-9:
            deadline, _, future = heapq.heappop(self._timers)
            self.now = max(self.now, deadline)
            if not future.done():
                future.set_result(None)
                await settle()
        self.now = target
        await settle()


def jpeg_frame(size: int = 2048, tag: bytes = b"") -> Frame:
    return Frame(data=b"\xff\xd8" + tag + bytes(size))


class FakeFrameSource(FrameSource):
    def __init__(self, frames: Optional[List[Any]] = None, *, fail_open: bool = False) -> None:
        super().__init__()
        self.fail_open = fail_open
        self.opened = 0
        self.closed = 0
        self.captures = 0
        self._frames = list(frames) if frames is not None else None

    async def _open(self) -> None:
        if self.fail_open:
            raise ResourceUnavailableError(log_message="test camera denied")
        self.opened += 1

    async def _close(self) -> None:
        self.closed += 1

    async def _read_frame(self) -> Optional[Frame]:
        self.captures += 1
        if self._frames:
            item = self._frames.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        return jpeg_frame()


class Held:
    """A scripted response that stays in flight until released."""

    def __init__(self, result: Any) -> None:
        self.result = result
        self.released = asyncio.Event()

    def release(self) -> None:
        self.released.set()


class ScriptedVerifier:
    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def queue(self, *responses: Any) -> None:
        self._responses.extend(responses)

    async def submit(self, frame: Frame) -> VerificationOutcome:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            item = self._responses.pop(0) if self._responses else {"verified": False}
            if isinstance(item, Held):
                await item.released.wait()
                item = item.result
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, dict):
                item = VerificationOutcome.model_validate(item)
            return item
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def camera() -> FakeFrameSource:
    return FakeFrameSource()


@pytest_asyncio.fixture
async def make_controller(clock):
    created: List[VerificationSessionController] = []

    def _make(source: FrameSource, verifier: Any, **scan: Any) -> VerificationSessionController:
        controller = VerificationSessionController(
            source, verifier, settings=ScanSettings(**scan), sleep=clock.sleep
        )
        created.append(controller)
        return controller

    yield _make

    for controller in created:
        await controller.aclose()
