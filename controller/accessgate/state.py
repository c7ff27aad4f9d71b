"""Shared controller state definitions for the access kiosk."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .models import VerificationOutcome


class SessionPhase(str, enum.Enum):
    """
    Verification session phases:

    1. IDLE            - No session; camera released
    2. SCANNING        - Session live, waiting for the next tick
    3. AWAITING_RESULT - One frame submitted, result outstanding
    4. HALTED          - Access granted; session stopped itself
    """
    IDLE = "idle"
    SCANNING = "scanning"
    AWAITING_RESULT = "awaiting_result"
    HALTED = "halted"


ACTIVE_PHASES = frozenset({SessionPhase.SCANNING, SessionPhase.AWAITING_RESULT})


@dataclass
class SessionState:
    """Owned by exactly one controller; mutated only by its transitions."""

    phase: SessionPhase = SessionPhase.IDLE
    ticks_in_flight: int = 0
    last_outcome: Optional[VerificationOutcome] = None
    halt_reason: Optional[str] = None
    started_at: Optional[float] = None

    def reset(self) -> None:
        self.phase = SessionPhase.IDLE
        self.ticks_in_flight = 0
        self.last_outcome = None
        self.halt_reason = None
        self.started_at = None


@dataclass
class ControllerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    phase: SessionPhase
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "phase": self.phase.value, "data": self.data}
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = ["SessionPhase", "ACTIVE_PHASES", "SessionState", "ControllerEvent"]
