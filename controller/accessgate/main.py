"""FastAPI entry-point for the accessgate kiosk controller."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Type, Union

import uvicorn
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .backend.http_client import VerificationClient
from .backend.registry_client import RegistryClient
from .capture_sequencer import CaptureSequencer
from .config import Settings, get_settings
from .errors import (
    AccessGateError,
    CaptureAbortedError,
    NetworkError,
    ProtocolError,
    RegistrationError,
    ResourceUnavailableError,
    SequencerBusyError,
    SessionStateError,
    ValidationError,
)
from .logging_config import configure_logging
from .models import MemberRegistration, filter_members
from .sensors.frame_source import FrameSource
from .sensors.quality import FrameQualityCheck
from .sensors.webcam_service import WebcamFrameSource
from .session_controller import VerificationSessionController

logger = logging.getLogger(__name__)

_ERROR_STATUS: Dict[Type[AccessGateError], int] = {
    ResourceUnavailableError: status.HTTP_409_CONFLICT,
    SessionStateError: status.HTTP_409_CONFLICT,
    SequencerBusyError: status.HTTP_409_CONFLICT,
    CaptureAbortedError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RegistrationError: status.HTTP_400_BAD_REQUEST,
    NetworkError: status.HTTP_502_BAD_GATEWAY,
    ProtocolError: status.HTTP_502_BAD_GATEWAY,
}


def _status_for(exc: AccessGateError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    settings: Optional[Settings] = None,
    *,
    frame_source: Optional[FrameSource] = None,
    verification_client: Optional[VerificationClient] = None,
    registry: Optional[RegistryClient] = None,
    sequencer: Optional[CaptureSequencer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="accessgate-controller", version="0.1.0")

    frame_source = frame_source or WebcamFrameSource(settings.camera)
    verification_client = verification_client or VerificationClient(settings)
    registry = registry or RegistryClient(settings)
    controller = VerificationSessionController(
        frame_source,
        verification_client,
        settings=settings.scan,
        ui_queue_size=settings.performance.ui_event_queue_size,
    )

    async def _enrollment_progress(event: str, data: Dict[str, Any]) -> None:
        controller.notify("enrollment", {"event": event, **data})

    if sequencer is None:
        sequencer = CaptureSequencer(settings.enrollment, on_progress=_enrollment_progress)
    quality_check = FrameQualityCheck.from_settings(settings.enrollment)

    app.state.settings = settings
    app.state.controller = controller
    app.state.sequencer = sequencer
    app.state.registry = registry

    @app.exception_handler(AccessGateError)
    async def access_gate_error_handler(request: Request, exc: AccessGateError) -> JSONResponse:
        code = _status_for(exc)
        logger.warning(f"{request.url.path} failed ({type(exc).__name__}): {exc}")
        return JSONResponse(
            {"status": "error", "error": type(exc).__name__, "message": exc.user_message},
            status_code=code,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception(f"Unhandled exception in {request.url.path}: {exc}")
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning(f"Validation error in {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"status": "error", "error": "ValidationError", "detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            sequencer.cancel()
            await controller.aclose()
            await verification_client.aclose()
            await registry.aclose()
            logger.info("Application shutdown complete")
        except Exception as e:
            logger.exception(f"Error during shutdown: {e}")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "phase": controller.phase.value})

    # ============================================================
    # Scanner
    # ============================================================

    @app.post("/scan/start")
    async def scan_start() -> JSONResponse:
        await controller.start()
        return JSONResponse({"status": "started", **controller.snapshot()})

    @app.post("/scan/stop")
    async def scan_stop() -> JSONResponse:
        await controller.stop()
        return JSONResponse({"status": "stopped", **controller.snapshot()})

    @app.get("/scan/state")
    async def scan_state() -> JSONResponse:
        return JSONResponse(controller.snapshot())

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = controller.register_ui()
        try:
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break  # Clean shutdown

                try:
                    await ws.send_json(event.to_payload())
                except Exception as e:
                    logger.debug(f"WebSocket send failed (client disconnected): {e}")
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass  # Clean shutdown
        except Exception as e:
            logger.error(f"Unexpected error in UI websocket: {e}")
        finally:
            controller.unregister_ui(queue)
            try:
                await ws.close()
            except Exception:
                pass

    # ============================================================
    # Enrollment
    # ============================================================

    @app.post("/enroll")
    async def enroll(registration: MemberRegistration) -> JSONResponse:
        logger.info(f"📸 Enrollment requested for {registration.first_name} {registration.last_name}")
        capture = await sequencer.capture_from(frame_source, quality_check)
        result = await registry.register_member(registration, capture)

        controller.notify("notice", {"level": "success", "message": "Member registered successfully!"})
        if result.training_status:
            controller.notify("notice", {"level": "info", "message": result.training_status})
        return JSONResponse(
            {
                "status": "registered",
                "member_id": result.member_id,
                "training_status": result.training_status,
                "retries": dict(capture.retries),
            }
        )

    @app.post("/enroll/cancel")
    async def enroll_cancel() -> JSONResponse:
        running = sequencer.running
        sequencer.cancel()
        return JSONResponse({"status": "cancelling" if running else "idle"})

    # ============================================================
    # Registry (read-only proxies + delete)
    # ============================================================

    @app.get("/members")
    async def members(search: Optional[str] = None) -> JSONResponse:
        found = filter_members(await registry.list_members(), search)
        return JSONResponse({"members": [member.model_dump(mode="json") for member in found]})

    @app.delete("/members/{member_id}")
    async def delete_member(member_id: Union[int, str]) -> JSONResponse:
        await registry.delete_member(member_id)
        return JSONResponse({"status": "deleted", "member_id": member_id})

    @app.get("/logs/access")
    async def access_logs(limit: int = Query(100, ge=1, le=1000)) -> JSONResponse:
        logs = await registry.access_logs(limit)
        return JSONResponse({"logs": [entry.model_dump(mode="json") for entry in logs]})

    @app.get("/stats/dashboard")
    async def dashboard() -> JSONResponse:
        stats = await registry.dashboard_stats()
        return JSONResponse({**stats.model_dump(mode="json"), "success_rate": stats.success_rate})

    return app


settings: Settings = get_settings()
configure_logging(
    settings.log_level,
    settings.log_directory,
    settings.log_retention_days,
    settings.log_module_levels,
)
app = create_app(settings)


def run() -> None:
    uvicorn.run(app, host=settings.controller_host, port=settings.controller_port)


__all__ = ["app", "create_app", "run"]
