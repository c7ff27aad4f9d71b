"""Central configuration for the accessgate kiosk controller."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class ScanSettings(BaseModel):
    """Live verification session timing (seconds)."""
    tick_interval_seconds: float = Field(1.0, gt=0, description="Period between capture-and-verify ticks")
    expired_clear_seconds: float = Field(5.0, description="Auto-clear delay for an expired-membership status")
    denied_clear_seconds: float = Field(3.0, description="Auto-clear delay for a short denied status")
    denied_long_clear_seconds: float = Field(8.0, description="Auto-clear delay for a multi-line denied status")
    long_message_lines: int = Field(1, ge=1, description="Denied messages with more lines than this use the long delay")
    expiry_warning_days: int = Field(7, description="Warn on grant when membership ends within this many days")


class EnrollmentSettings(BaseModel):
    """Guided multi-angle capture configuration."""
    countdown_steps: int = Field(3, ge=1, description="Countdown steps shown before each capture")
    countdown_interval_seconds: float = Field(1.0, description="Delay between countdown steps")
    capture_pause_seconds: float = Field(0.3, description="Pause after the countdown before the shutter")
    confirm_pause_seconds: float = Field(0.8, description="Pause after a successful capture before the next angle")
    max_retries_per_angle: Optional[int] = Field(
        10, description="Quality retries allowed per angle (0 or None = unbounded)"
    )
    min_frame_bytes: int = Field(1000, description="Smallest encoded frame accepted by the quality check")
    min_focus: float = Field(0.0, description="Minimum Laplacian variance (0 disables the focus check)")


class CameraSettings(BaseModel):
    """Webcam hardware configuration."""
    device_index: int = Field(0, description="OpenCV capture device index")
    resolution_width: int = Field(1280, description="Requested capture width (pixels)")
    resolution_height: int = Field(720, description="Requested capture height (pixels)")
    jpeg_quality: int = Field(95, ge=1, le=100, description="JPEG quality for submitted frames")


class PerformanceSettings(BaseModel):
    """Queue tuning."""
    ui_event_queue_size: int = Field(16, description="Max buffered UI events per subscriber")


class Settings(BaseSettings):
    """Environment-driven settings for controller subsystems."""

    # Backend & API
    backend_api_url: str = Field(..., description="Member registry / matcher REST base URL")
    api_token: Optional[str] = Field(None, description="Bearer token for registry endpoints")
    request_timeout_seconds: float = Field(15.0, description="HTTP timeout for backend requests")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")
    log_module_levels: Dict[str, str] = Field(
        default_factory=dict, description="Per-logger level overrides, e.g. {\"accessgate.session_controller\": \"DEBUG\"}"
    )

    # Nested Configuration Objects
    scan: ScanSettings = Field(default_factory=ScanSettings, description="Verification session timing")
    enrollment: EnrollmentSettings = Field(default_factory=EnrollmentSettings, description="Enrollment capture")
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera hardware settings")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("backend_api_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            parsed = value.strip()
            if not parsed:
                raise ValueError("BACKEND_API_URL must not be empty")
            return parsed.rstrip("/")
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
