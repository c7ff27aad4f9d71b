"""Member registry REST client: enrollment, listings, logs, dashboard."""
from __future__ import annotations

import logging
from typing import Any, List, Type, TypeVar, Union

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..capture_sequencer import validate_enrollment
from ..errors import ProtocolError, RegistrationError
from ..models import (
    AccessLogEntry,
    DashboardStats,
    EnrollmentCapture,
    EnrollmentResult,
    Member,
    MemberRegistration,
)
from .http_client import BackendHttpClient

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class RegistryClient(BackendHttpClient):
    """Thin wrapper around the member registry REST API."""

    async def verify_auth(self) -> bool:
        """True when the configured bearer token is accepted."""
        response = await self._send("POST", "/api/auth/verify", op="registry.verify_auth")
        if response.is_error:
            logger.warning("registry.verify_auth: HTTP %d", response.status_code)
            return False
        return True

    async def register_member(self, registration: MemberRegistration, capture: EnrollmentCapture) -> EnrollmentResult:
        """Upload member attributes plus one labelled frame per angle.

        Incomplete captures are rejected before any request is made.
        """
        op = "registry.register"
        validate_enrollment(capture)

        files = [
            (angle.id, (f"{angle.id}.jpg", frame.data, frame.content_type))
            for angle, frame in capture.shots
        ]
        logger.info("%s: sending registration with %d photos", op, len(files))
        response = await self._send(
            "POST",
            "/api/members/register",
            op=op,
            data=registration.to_form_fields(),
            files=files,
        )
        if response.is_error:
            reason = None
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            if isinstance(payload, dict):
                reason = payload.get("error") or payload.get("message")
            logger.error("%s: HTTP %d - %.200s", op, response.status_code, reason or payload)
            raise RegistrationError(str(reason) if reason else None, status_code=response.status_code)

        result = self._parse(EnrollmentResult, self._decode_json(response, op=op), op=op)
        logger.info("%s: member registered id=%s", op, result.member_id)
        return result

    async def list_members(self) -> List[Member]:
        op = "registry.members"
        response = await self._send("GET", "/api/members", op=op)
        payload = self._expect_json(response, op=op)
        if not isinstance(payload, dict):
            raise ProtocolError(log_message=f"{op}: expected an object with 'members'")
        return self._parse_list(Member, payload.get("members") or [], op=op)

    async def delete_member(self, member_id: Union[int, str]) -> None:
        op = "registry.delete_member"
        response = await self._send("DELETE", f"/api/members/{member_id}", op=op)
        if response.is_error:
            raise ProtocolError(
                "Failed to delete member",
                log_message=f"{op}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        logger.info("%s: member %s deleted", op, member_id)

    async def access_logs(self, limit: int = 100) -> List[AccessLogEntry]:
        op = "registry.access_logs"
        response = await self._send("GET", "/api/logs/access", op=op, params={"limit": limit})
        payload = self._expect_json(response, op=op)
        # The log endpoint has answered both as a bare list and as {"logs": [...]}.
        if isinstance(payload, dict):
            payload = payload.get("logs") or []
        return self._parse_list(AccessLogEntry, payload, op=op)

    async def dashboard_stats(self) -> DashboardStats:
        op = "registry.dashboard"
        response = await self._send("GET", "/api/stats/dashboard", op=op)
        return self._parse(DashboardStats, self._expect_json(response, op=op), op=op)

    def _expect_json(self, response: httpx.Response, *, op: str) -> Any:
        if response.is_error:
            logger.error("%s: HTTP %d - %.200s", op, response.status_code, response.text)
            raise ProtocolError(log_message=f"{op}: HTTP {response.status_code}", status_code=response.status_code)
        return self._decode_json(response, op=op)

    @staticmethod
    def _parse(model: Type[ModelT], payload: Any, *, op: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            logger.error("%s: malformed response %s", op, e)
            raise ProtocolError(log_message=f"{op}: malformed {model.__name__}") from e

    @classmethod
    def _parse_list(cls, model: Type[ModelT], payload: Any, *, op: str) -> List[ModelT]:
        if not isinstance(payload, list):
            raise ProtocolError(log_message=f"{op}: expected a list of {model.__name__}")
        return [cls._parse(model, item, op=op) for item in payload]


__all__ = ["RegistryClient"]
