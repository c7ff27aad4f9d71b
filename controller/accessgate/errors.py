"""Error taxonomy for the kiosk controller."""
from __future__ import annotations

from typing import Optional


class AccessGateError(RuntimeError):
    """Base error carrying an operator-facing message."""

    default_message = "Something went wrong, please try again"

    def __init__(self, user_message: Optional[str] = None, *, log_message: Optional[str] = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(log_message or self.user_message)


class ResourceUnavailableError(AccessGateError):
    """Camera is busy, missing, or access was denied."""

    default_message = (
        "Camera unavailable. Make sure no other application or session is using it "
        "and that camera access is allowed."
    )


class NetworkError(AccessGateError):
    """No response was received from the backend."""

    default_message = "Could not reach the server. Please try again."


class ProtocolError(AccessGateError):
    """A response arrived but did not match the expected contract."""

    default_message = "Server returned an invalid response."

    def __init__(
        self,
        user_message: Optional[str] = None,
        *,
        log_message: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(user_message, log_message=log_message)
        self.status_code = status_code


class ValidationError(AccessGateError):
    """Enrollment data is incomplete; nothing was sent."""

    default_message = "Please capture all 5 photos first"


class RegistrationError(AccessGateError):
    """The registry rejected an enrollment; `user_message` is its reason verbatim."""

    default_message = "Registration failed"

    def __init__(self, user_message: Optional[str] = None, *, status_code: Optional[int] = None) -> None:
        super().__init__(user_message)
        self.status_code = status_code


class SessionStateError(AccessGateError):
    """Operation is not valid in the controller's current phase."""

    default_message = "Scanner is already running"


class FrameCaptureError(AccessGateError):
    """The frame source could not produce a frame."""

    default_message = "Camera did not return a frame"


class CaptureAbortedError(AccessGateError):
    """An enrollment capture sequence was cancelled or ran out of retries."""

    default_message = "Photo capture was cancelled"


class SequencerBusyError(AccessGateError):
    """A capture sequence is already running."""

    default_message = "A photo capture is already in progress"


__all__ = [
    "AccessGateError",
    "ResourceUnavailableError",
    "NetworkError",
    "ProtocolError",
    "ValidationError",
    "RegistrationError",
    "SessionStateError",
    "FrameCaptureError",
    "CaptureAbortedError",
    "SequencerBusyError",
]
