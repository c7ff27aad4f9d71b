"""Display payloads derived from verification outcomes."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import ScanSettings
from .models import VerificationOutcome


class StatusKind(str, enum.Enum):
    READY = "ready"
    STOPPED = "stopped"
    GRANTED = "granted"
    EXPIRED = "expired"
    DENIED = "denied"


@dataclass
class StatusView:
    kind: StatusKind
    headline: str
    lines: List[str] = field(default_factory=list)
    cue: Optional[str] = None
    clear_after: Optional[float] = None
    subject: Optional[Dict[str, Any]] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_data(self) -> Dict[str, Any]:
        return {
            "status": self.kind.value,
            "headline": self.headline,
            "lines": list(self.lines),
            "cue": self.cue,
            "clear_after": self.clear_after,
            "subject": self.subject,
            **self.details,
        }


def ready_view() -> StatusView:
    return StatusView(StatusKind.READY, "Ready to scan", ["Position your face within the frame"])


def stopped_view() -> StatusView:
    return StatusView(StatusKind.STOPPED, "Scanner stopped", ['Click "Start Scanner" to begin'])


def _format_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%Y-%m-%d")


def _subject_payload(outcome: VerificationOutcome) -> Optional[Dict[str, Any]]:
    if outcome.subject is None:
        return None
    payload = outcome.subject.model_dump(mode="json")
    payload["display_name"] = outcome.subject.display_name
    return payload


def granted_view(outcome: VerificationOutcome, settings: ScanSettings) -> StatusView:
    subject = outcome.subject
    headline = "FACE RECOGNIZED" if outcome.partial_match else "ACCESS GRANTED"
    lines: List[str] = []
    if subject is not None:
        lines.append(subject.display_name)
        lines.append(f"Membership: {subject.membership_type or 'Standard'}")
    if outcome.confidence is not None:
        lines.append(f"Confidence: {outcome.confidence * 100:.1f}%")

    days_left = outcome.membership_days_left
    if days_left is not None and 0 < days_left <= settings.expiry_warning_days:
        lines.append(f"Expires in {days_left} day{'s' if days_left > 1 else ''}!")
    if outcome.partial_match:
        lines.append("Please update your membership record at front desk")
    if outcome.latency_seconds:
        lines.append(f"{outcome.latency_seconds:.1f}s")
    lines.append("Scanner stopped automatically")

    return StatusView(
        StatusKind.GRANTED,
        headline,
        lines,
        cue="success",
        subject=_subject_payload(outcome),
        details={
            "partial_match": outcome.partial_match,
            "confidence": outcome.confidence,
            "membership_days_left": days_left,
            "latency_seconds": outcome.latency_seconds,
        },
    )


def expired_view(outcome: VerificationOutcome, settings: ScanSettings) -> StatusView:
    lines: List[str] = []
    if outcome.subject is not None:
        lines.append(outcome.subject.display_name)
    lines.append("Please renew your subscription")
    expired_on = _format_date(outcome.expired_date)
    if expired_on:
        lines.append(f"Expired: {expired_on}")
    return StatusView(
        StatusKind.EXPIRED,
        "MEMBERSHIP EXPIRED",
        lines,
        cue="error",
        clear_after=settings.expired_clear_seconds,
        subject=_subject_payload(outcome),
        details={"expired_date": outcome.expired_date},
    )


def denied_view(outcome: VerificationOutcome, settings: ScanSettings) -> StatusView:
    message_lines = outcome.message_lines
    lines = list(message_lines)
    if outcome.error_detail:
        lines.append(outcome.error_detail)
    if outcome.confidence is not None:
        lines.append(f"Match score: {outcome.confidence * 100:.1f}%")

    long_message = len(message_lines) > settings.long_message_lines
    return StatusView(
        StatusKind.DENIED,
        "ACCESS DENIED",
        lines,
        cue="error",
        clear_after=settings.denied_long_clear_seconds if long_message else settings.denied_clear_seconds,
        details={
            "message": "\n".join(message_lines),
            "error_detail": outcome.error_detail,
            "confidence": outcome.confidence,
            "latency_seconds": outcome.latency_seconds,
        },
    )


__all__ = [
    "StatusKind",
    "StatusView",
    "ready_view",
    "stopped_view",
    "granted_view",
    "expired_view",
    "denied_view",
]
