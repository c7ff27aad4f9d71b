"""HTTP client helpers for the matcher REST endpoint."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings
from ..errors import NetworkError, ProtocolError
from ..models import Frame, VerificationOutcome

logger = logging.getLogger(__name__)


class BackendHttpClient:
    """Shared httpx plumbing: base URL, bearer token, and transport error mapping."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        headers: Dict[str, str] = {}
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"
        self._client = httpx.AsyncClient(
            base_url=settings.backend_api_url,
            timeout=settings.request_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def _send(self, method: str, path: str, *, op: str, **kwargs: Any) -> httpx.Response:
        """Issue one request; anything that prevents a response becomes NetworkError."""
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.error("%s: request timeout", op)
            raise NetworkError(log_message=f"{op}: request timeout") from e
        except httpx.TransportError as e:
            logger.error("%s: network error - %s", op, e)
            raise NetworkError(log_message=f"{op}: network error - {e}") from e

    @staticmethod
    def _decode_json(response: httpx.Response, *, op: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.error("%s: response is not JSON (HTTP %d) %.200r", op, response.status_code, response.text)
            raise ProtocolError(
                log_message=f"{op}: response is not JSON",
                status_code=response.status_code,
            ) from e

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)


class VerificationClient(BackendHttpClient):
    """Submits one frame to the remote matcher. No retries; callers own retry policy."""

    async def submit(self, frame: Frame) -> VerificationOutcome:
        op = "matcher.verify"
        started = time.perf_counter()
        response = await self._send("POST", "/api/face/verify", op=op, json={"imageData": frame.to_data_url()})
        latency = time.perf_counter() - started

        if response.is_error:
            logger.error("%s: HTTP %d - %.200s", op, response.status_code, response.text)
            raise ProtocolError(
                "Verification request failed",
                log_message=f"{op}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        payload = self._decode_json(response, op=op)
        if not isinstance(payload, dict):
            raise ProtocolError(log_message=f"{op}: expected a JSON object, got {type(payload).__name__}")
        try:
            outcome = VerificationOutcome.model_validate(payload)
        except PydanticValidationError as e:
            logger.error("%s: malformed outcome %s", op, e)
            raise ProtocolError(log_message=f"{op}: malformed outcome") from e

        logger.debug("%s: verified=%s expired=%s latency=%.3fs", op, outcome.verified, outcome.expired, latency)
        return outcome.model_copy(update={"latency_seconds": latency})


__all__ = ["BackendHttpClient", "VerificationClient"]
