"""Live face-verification session for one kiosk camera."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .config import ScanSettings
from .errors import FrameCaptureError, NetworkError, ProtocolError, SessionStateError
from .models import Frame, OutcomeKind, VerificationOutcome
from .sensors.frame_source import FrameSource
from .state import ACTIVE_PHASES, ControllerEvent, SessionPhase, SessionState
from .status import (
    StatusView,
    denied_view,
    expired_view,
    granted_view,
    ready_view,
    stopped_view,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class Verifier(Protocol):
    async def submit(self, frame: Frame) -> VerificationOutcome:
        ...


class VerificationSessionController:
    """Drives repeated capture-and-verify ticks and decides continue / pause / halt.

    Flow:
    1. start()  - acquire the camera, enter SCANNING, start the tick timer
    2. tick()   - at most one request in flight; overlapping ticks are dropped
    3. outcome  - expired / denied keep scanning (status auto-clears),
                  granted halts the session and releases the camera
    4. stop()   - cancel timers and any outstanding request, back to IDLE
    """

    def __init__(
        self,
        frame_source: FrameSource,
        client: Verifier,
        *,
        settings: Optional[ScanSettings] = None,
        ui_queue_size: int = 16,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.settings = settings or ScanSettings()
        self._frame_source = frame_source
        self._client = client
        self._sleep = sleep
        self._ui_queue_size = ui_queue_size
        self._lock = asyncio.Lock()

        self._state = SessionState()
        self._generation = 0
        self._status: StatusView = stopped_view()
        self._status_seq = 0
        self._ui_subscribers: List[asyncio.Queue[ControllerEvent]] = []

        self._tick_task: Optional[asyncio.Task[None]] = None
        self._inflight_task: Optional[asyncio.Task[None]] = None
        self._clear_task: Optional[asyncio.Task[None]] = None

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> StatusView:
        return self._status

    def snapshot(self) -> Dict[str, Any]:
        outcome = self._state.last_outcome
        return {
            "phase": self._state.phase.value,
            "ticks_in_flight": self._state.ticks_in_flight,
            "halt_reason": self._state.halt_reason,
            "started_at": self._state.started_at,
            "last_outcome": outcome.model_dump(mode="json") if outcome else None,
            "status": self._status.to_data(),
        }

    # ============================================================
    # Lifecycle
    # ============================================================

    async def start(self) -> None:
        async with self._lock:
            if self._state.phase not in (SessionPhase.IDLE, SessionPhase.HALTED):
                raise SessionStateError(log_message=f"start() rejected in phase {self._state.phase.value}")

            # Raises ResourceUnavailableError with the phase untouched.
            await self._frame_source.acquire(self)

            self._cancel_clear_timer()
            self._generation += 1
            self._state.reset()
            self._state.started_at = time.time()
            self._advance_phase(SessionPhase.SCANNING)
            self._publish_status(ready_view())
            self._tick_task = asyncio.create_task(self._tick_loop(), name="scanner-tick-loop")

        logger.info(
            "🎬 [SCAN_START] Scanner started (tick every %.1fs)", self.settings.tick_interval_seconds
        )

    async def stop(self) -> None:
        """Stop from any phase. A no-op when already IDLE."""
        async with self._lock:
            if self._state.phase is SessionPhase.IDLE:
                logger.debug("stop() ignored - scanner already idle")
                return

            previous = self._state.phase
            self._generation += 1
            self._state.reset()

            tasks = [self._tick_task, self._inflight_task, self._clear_task]
            self._tick_task = self._inflight_task = self._clear_task = None
            await self._cancel_tasks(tasks)

            await self._frame_source.release(self)
            self._publish_status(stopped_view())
            self._advance_phase(SessionPhase.IDLE)

        logger.info("🏁 [SCAN_STOP] Scanner stopped (was %s)", previous.value)

    async def aclose(self) -> None:
        """Host teardown."""
        await self.stop()

    # ============================================================
    # Ticks
    # ============================================================

    async def _tick_loop(self) -> None:
        try:
            while self._state.phase in ACTIVE_PHASES:
                await self._sleep(self.settings.tick_interval_seconds)
                if self._state.phase not in ACTIVE_PHASES:
                    break
                self._spawn_tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scanner tick loop crashed")

    def _spawn_tick(self) -> None:
        busy = self._inflight_task is not None and not self._inflight_task.done()
        if busy or self._state.ticks_in_flight or self._state.phase is not SessionPhase.SCANNING:
            logger.debug("⏭️ Tick skipped (verification request still in flight)")
            return
        self._inflight_task = asyncio.create_task(self._run_tick(), name="scanner-tick")

    async def _run_tick(self) -> None:
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unexpected error during scanner tick")

    async def tick(self) -> bool:
        """One capture-and-verify attempt. Returns False when the tick was skipped."""
        state = self._state
        if state.phase is not SessionPhase.SCANNING or state.ticks_in_flight:
            return False

        generation = self._generation
        state.ticks_in_flight = 1
        state.phase = SessionPhase.AWAITING_RESULT
        outcome: Optional[VerificationOutcome] = None
        failure: Optional[Exception] = None
        try:
            frame = await self._grab_frame()
            if frame is not None:
                outcome = await self._client.submit(frame)
        except (NetworkError, ProtocolError) as exc:
            failure = exc
        finally:
            if generation == self._generation:
                state.ticks_in_flight = 0
                if state.phase is SessionPhase.AWAITING_RESULT:
                    state.phase = SessionPhase.SCANNING

        if failure is not None:
            if generation == self._generation:
                self._report_transient(failure)
            return True

        if outcome is not None:
            if generation == self._generation and state.phase is SessionPhase.SCANNING:
                await self._apply_outcome(outcome, generation)
            else:
                logger.info("Discarding verification result that arrived after the session ended")
        return True

    async def _grab_frame(self) -> Optional[Frame]:
        try:
            frame = await self._frame_source.capture()
        except FrameCaptureError as exc:
            logger.warning("Frame capture failed: %s", exc)
            return None
        if frame is None:
            logger.debug("Video not ready yet - no frame this tick")
        return frame

    def _report_transient(self, exc: Exception) -> None:
        if isinstance(exc, ProtocolError):
            logger.warning("⚠️ Tick failed - matcher response did not match contract: %s", exc)
        else:
            logger.warning("⚠️ Tick failed - matcher unreachable: %s", exc)
        self._broadcast(
            ControllerEvent(
                type="notice",
                phase=self._state.phase,
                data={
                    "level": "error",
                    "reason": type(exc).__name__,
                    "message": "Verification failed. Please try again.",
                },
                error=str(exc),
            )
        )

    # ============================================================
    # Decision policy
    # ============================================================

    async def _apply_outcome(self, outcome: VerificationOutcome, generation: int) -> None:
        self._state.last_outcome = outcome
        kind = outcome.classification

        if kind is OutcomeKind.EXPIRED:
            name = outcome.subject.display_name if outcome.subject else "Unknown"
            logger.info(f"⚠️ Membership expired for {name} (expired {outcome.expired_date})")
            self._publish_status(expired_view(outcome, self.settings))
            return

        if kind is OutcomeKind.GRANTED:
            name = outcome.subject.display_name if outcome.subject else "Unknown"
            logger.info(
                f"✅ Access granted: {name} (partial_match={outcome.partial_match}, "
                f"confidence={outcome.confidence}, {outcome.latency_seconds:.2f}s)"
            )
            self._publish_status(granted_view(outcome, self.settings))
            await self._halt("access_granted", generation)
            return

        logger.info(
            "❌ Access denied: %s (confidence=%s)", outcome.message or "Face not recognized", outcome.confidence
        )
        self._publish_status(denied_view(outcome, self.settings))

    async def _halt(self, reason: str, generation: int) -> None:
        """Stop the session from inside a tick. Serialised with start() / stop()."""
        async with self._lock:
            if generation != self._generation:
                logger.info("Halt (%s) dropped - session was stopped or restarted first", reason)
                return
            self._generation += 1
            self._state.phase = SessionPhase.HALTED
            self._state.halt_reason = reason

            tasks = [self._tick_task, self._clear_task]
            self._tick_task = self._clear_task = None
            await self._cancel_tasks(tasks)

            await self._frame_source.release(self)
            self._advance_phase(SessionPhase.HALTED, data={"halt_reason": reason})
        logger.info("🛑 Scanner halted (%s)", reason)

    # ============================================================
    # Status display & auto-clear
    # ============================================================

    def _publish_status(self, view: StatusView) -> None:
        """Show a new status; any pending auto-clear for the previous one is cancelled."""
        self._cancel_clear_timer()
        self._status = view
        self._status_seq += 1
        self._broadcast(ControllerEvent(type="status", data=view.to_data(), phase=self._state.phase))

        if view.clear_after and self._state.phase in ACTIVE_PHASES:
            self._clear_task = asyncio.create_task(
                self._auto_clear(self._status_seq, view.clear_after), name="scanner-status-clear"
            )

    async def _auto_clear(self, seq: int, delay: float) -> None:
        await self._sleep(delay)
        if seq != self._status_seq or self._state.phase not in ACTIVE_PHASES:
            return
        self._clear_task = None
        logger.debug("Status auto-cleared after %.1fs", delay)
        self._publish_status(ready_view())

    def _cancel_clear_timer(self) -> None:
        task, self._clear_task = self._clear_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ============================================================
    # UI subscribers
    # ============================================================

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self._ui_queue_size)
        self._ui_subscribers.append(queue)
        queue.put_nowait(ControllerEvent(type="status", data=self._status.to_data(), phase=self._state.phase))
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    def notify(self, event_type: str, data: Dict[str, Any], *, error: Optional[str] = None) -> None:
        """Push a non-session event (enrollment progress, toasts) to the same UI subscribers."""
        self._broadcast(ControllerEvent(type=event_type, data=data, phase=self._state.phase, error=error))

    def _advance_phase(self, phase: SessionPhase, *, data: Optional[Dict[str, Any]] = None) -> None:
        self._state.phase = phase
        self._broadcast(ControllerEvent(type="state", data=data or {}, phase=phase))

    def _broadcast(self, event: ControllerEvent) -> None:
        """Fan out to all UI subscribers, dropping the oldest event when a queue is full."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    @staticmethod
    async def _cancel_tasks(tasks: List[Optional[asyncio.Task[Any]]]) -> None:
        current = asyncio.current_task()
        for task in tasks:
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping scanner task: %s", e)


__all__ = ["VerificationSessionController", "Verifier"]
