"""Central configuration for the ticketgate scanner service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class ScannerSettings(BaseModel):
    """Camera decoder configuration."""
    enabled: bool = Field(True, description="Acquire the camera on startup")
    camera_id: int = Field(0, description="OpenCV capture device index")
    resolution_width: int = Field(640, description="Capture width (pixels)")
    resolution_height: int = Field(480, description="Capture height (pixels)")
    fps: int = Field(30, description="Requested capture frame rate")
    poll_interval_seconds: float = Field(0.05, description="Delay between decode attempts")
    duplicate_window_seconds: float = Field(2.0, description="Suppress the same payload seen again within this window")
    reset_settle_ms: int = Field(300, description="Delay between camera release and re-acquire on reset (ms)")
    max_read_failures: int = Field(30, description="Consecutive failed reads before the camera is reported busy")


class PerformanceSettings(BaseModel):
    """Queue tuning."""
    ui_event_queue_size: int = Field(16, description="Max buffered UI events per subscriber")


class Settings(BaseSettings):
    """Environment-driven settings for scanner subsystems."""

    # Booking authority
    backend_api_url: str = Field("http://127.0.0.1:5000", description="Booking API base URL")
    validate_path: str = Field(
        "/api/booking/validate/{booking_id}",
        description="Consume-ticket path template, relative to backend_api_url",
    )
    request_timeout_seconds: float = Field(10.0, description="Timeout for a single consume request")
    auth_token: Optional[str] = Field(None, description="Initial bearer credential for the booking API")

    # Payload parsing
    booking_hosts: List[str] = Field(
        default_factory=lambda: ["tixbook.com", "www.tixbook.com"],
        description="Hosts accepted in https://<host>/booking/<id> payloads",
    )
    token_fields: List[str] = Field(
        default_factory=lambda: ["bookingId", "booking_id", "ticketId", "ticket_id"],
        description="JSON keys that carry the booking identifier",
    )

    # Local stand-in for the booking API
    mock_backend_enabled: bool = Field(False, description="Serve the in-memory booking API from this app")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    scanner: ScannerSettings = Field(default_factory=ScannerSettings, description="Camera decoder settings")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("validate_path")
    @classmethod
    def _check_validate_path(cls, value: str) -> str:
        if "{booking_id}" not in value:
            raise ValueError("VALIDATE_PATH must contain a {booking_id} placeholder")
        if not value.startswith("/"):
            value = "/" + value
        return value

    @field_validator("auth_token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
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
