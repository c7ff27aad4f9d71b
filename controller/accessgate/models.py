"""Frames, verification outcomes, and registry records."""
from __future__ import annotations

import base64
import enum
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


# ============================================================
# Frames & Enrollment
# ============================================================

@dataclass(frozen=True)
class Frame:
    """One encoded still image. Consumed once by a request, then dropped."""

    data: bytes = field(repr=False)
    captured_at: float = field(default_factory=time.time)
    content_type: str = "image/jpeg"

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


@dataclass(frozen=True)
class CaptureAngle:
    id: str
    label: str
    instruction: str


CENTER = CaptureAngle("center", "Center", "Look DIRECTLY at the camera")
LEFT = CaptureAngle("left", "Left", "SLOWLY turn your head LEFT (30°)")
RIGHT = CaptureAngle("right", "Right", "SLOWLY turn your head RIGHT (30°)")
UP = CaptureAngle("up", "Up", "GENTLY tilt your chin UP")
DOWN = CaptureAngle("down", "Down", "GENTLY tilt your chin DOWN")

DEFAULT_ANGLES: Tuple[CaptureAngle, ...] = (CENTER, LEFT, RIGHT, UP, DOWN)
ANGLES_BY_ID: Dict[str, CaptureAngle] = {angle.id: angle for angle in DEFAULT_ANGLES}


@dataclass
class EnrollmentCapture:
    """Ordered (angle, frame) shots collected for one registration attempt."""

    required: Tuple[CaptureAngle, ...] = DEFAULT_ANGLES
    shots: List[Tuple[CaptureAngle, Frame]] = field(default_factory=list)
    retries: Dict[str, int] = field(default_factory=dict)

    def add(self, angle: CaptureAngle, frame: Frame) -> None:
        self.shots.append((angle, frame))

    def note_retry(self, angle: CaptureAngle) -> int:
        self.retries[angle.id] = self.retries.get(angle.id, 0) + 1
        return self.retries[angle.id]

    @property
    def angle_sequence(self) -> List[str]:
        return [angle.id for angle, _ in self.shots]

    @property
    def is_complete(self) -> bool:
        return self.angle_sequence == [angle.id for angle in self.required]

    @property
    def primary_frame(self) -> Optional[Frame]:
        """The center shot doubles as the member's profile photo."""
        return self.shots[0][1] if self.shots else None

    def missing_angles(self) -> List[str]:
        captured = set(self.angle_sequence)
        return [angle.id for angle in self.required if angle.id not in captured]


# ============================================================
# Wire Models
# ============================================================

class WireModel(BaseModel):
    """Backend payloads use camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SubjectRef(WireModel):
    id: Optional[Union[int, str]] = None
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    membership_type: Optional[str] = None
    photo_path: Optional[str] = None
    membership_days_left: Optional[int] = None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or "Unknown"


class OutcomeKind(str, enum.Enum):
    GRANTED = "granted"
    EXPIRED = "expired"
    DENIED = "denied"


class VerificationOutcome(WireModel):
    verified: bool = False
    partial_match: bool = False
    expired: bool = False
    confidence: Optional[float] = None
    subject: Optional[SubjectRef] = Field(None, validation_alias=AliasChoices("member", "subject"))
    membership_days_left: Optional[int] = None
    expired_date: Optional[str] = None
    message: str = ""
    error_detail: Optional[str] = Field(
        None, validation_alias=AliasChoices("error", "errorDetail", "error_detail")
    )
    latency_seconds: float = 0.0

    @field_validator("verified", "partial_match", "expired", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("message", mode="before")
    @classmethod
    def _null_message(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalise_confidence(cls, value: Any) -> Any:
        # Grants have been seen reported as percentages (92) and denials as ratios (0.43).
        if value is None or isinstance(value, bool):
            return None
        score = float(value)
        if score > 1.0:
            score /= 100.0
        return min(max(score, 0.0), 1.0)

    @model_validator(mode="after")
    def _days_left_from_subject(self) -> "VerificationOutcome":
        if self.membership_days_left is None and self.subject is not None:
            self.membership_days_left = self.subject.membership_days_left
        return self

    @property
    def classification(self) -> OutcomeKind:
        if self.expired:
            return OutcomeKind.EXPIRED
        if self.verified:
            return OutcomeKind.GRANTED
        return OutcomeKind.DENIED

    @property
    def message_lines(self) -> List[str]:
        return (self.message or "Face not recognized").split("\n")


class MemberRegistration(WireModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: str = ""
    membership_type: str = Field("Standard", min_length=1)
    membership_duration: int = Field(..., gt=0, description="Membership length in months")
    membership_price: float = Field(..., ge=0)

    @field_validator("first_name", "last_name", "email", "membership_type", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def _looks_like_email(cls, value: str) -> str:
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("email address is not valid")
        return value

    def to_form_fields(self) -> Dict[str, str]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "membershipType": self.membership_type,
            "membershipDuration": str(self.membership_duration),
            "membershipPrice": f"{self.membership_price:g}",
        }


class EnrollmentResult(WireModel):
    member_id: Union[int, str]
    training_status: Optional[str] = None


class Member(WireModel):
    id: Union[int, str]
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    membership_type: Optional[str] = None
    photo_path: Optional[str] = None
    last_access: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "Unknown"

    def matches(self, term: str) -> bool:
        needle = term.strip().lower()
        if not needle:
            return True
        haystack = " ".join(
            str(part)
            for part in (self.display_name, self.email, self.phone, self.membership_type)
            if part
        )
        return needle in haystack.lower()


def filter_members(members: Sequence[Member], term: Optional[str]) -> List[Member]:
    if not term:
        return list(members)
    return [member for member in members if member.matches(term)]


class AccessLogEntry(WireModel):
    timestamp: datetime
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: str
    message: str = ""

    @property
    def display_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return "Unknown"


class DashboardStats(WireModel):
    total_members: int = 0
    today_access: int = 0
    today_denied: int = 0
    recent_members: List[Member] = Field(default_factory=list)

    @field_validator("recent_members", mode="before")
    @classmethod
    def _null_members(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def success_rate(self) -> float:
        total = self.today_access + self.today_denied
        if total <= 0:
            return 0.0
        return round(self.today_access / total * 100, 1)


__all__ = [
    "Frame",
    "CaptureAngle",
    "DEFAULT_ANGLES",
    "ANGLES_BY_ID",
    "EnrollmentCapture",
    "WireModel",
    "SubjectRef",
    "OutcomeKind",
    "VerificationOutcome",
    "MemberRegistration",
    "EnrollmentResult",
    "Member",
    "filter_members",
    "AccessLogEntry",
    "DashboardStats",
]
