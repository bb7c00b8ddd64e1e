"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

import re

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_APP_ID = "3164500"
DEFAULT_PRIORITY_DEPOTS = ["3164501", "3164500", "3164502"]
DEFAULT_BACKOFFS = [0.0, 5.0, 15.0]

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class AppConfig(BaseModel):
    """A validated configuration model for the application."""

    # Account
    username: str = ""

    # Layout & tooling
    install_root: str = ""
    downloader_path: str = ""
    app_id: str = DEFAULT_APP_ID

    # Download Settings
    max_downloads: int = 8
    priority_depots: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PRIORITY_DEPOTS)
    )
    preflight_backoffs: list[float] = Field(
        default_factory=lambda: list(DEFAULT_BACKOFFS)
    )
    retry_backoffs: list[float] = Field(default_factory=lambda: list(DEFAULT_BACKOFFS))

    # Timeouts
    login_timeout: float = 30.0
    probe_timeout: float = 10.0
    progress_interval_ms: int = 50

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)
    require_account: bool = Field(False, repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if _CONTROL_CHARS.search(v):
            raise ValueError("Username contains control characters.")
        if len(v) > 64:
            raise ValueError("Username must be at most 64 characters.")
        return v

    @field_validator("app_id")
    @classmethod
    def validate_app_id(cls, v: str) -> str:
        if not re.fullmatch(r"\d{1,10}", v):
            raise ValueError(f"App ID must be 1-10 digits, but got: {v}")
        return v

    @field_validator("max_downloads")
    @classmethod
    def validate_max_downloads(cls, v: int) -> int:
        """Ensures a reasonable parallelism hint."""
        if v < 1 or v > 64:
            raise ValueError("Max downloads must be between 1 and 64.")
        return v

    @field_validator("priority_depots")
    @classmethod
    def validate_priority_depots(cls, v: list[str]) -> list[str]:
        depots = [d.strip() for d in v if d.strip()]
        for depot in depots:
            if not depot.isdigit():
                raise ValueError(f"Depot ids must be numeric, but got: {depot}")
        return depots

    @field_validator("preflight_backoffs", "retry_backoffs")
    @classmethod
    def validate_backoffs(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("Backoff schedules need at least one entry.")
        if any(delay < 0 for delay in v):
            raise ValueError("Backoff delays cannot be negative.")
        return v

    @field_validator("login_timeout", "probe_timeout")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive.")
        return v

    @field_validator("progress_interval_ms")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1 or v > 5000:
            raise ValueError("Progress interval must be between 1 and 5000 ms.")
        return v

    @model_validator(mode="after")
    def validate_account_settings(self) -> "AppConfig":
        """Commands that talk to Steam need a username and an install root."""
        if not self.require_account:
            return self
        if not self.username:
            raise ValueError("Username is not configured. Run 'depot-cli init'.")
        if not self.install_root:
            raise ValueError("Install root is not configured. Run 'depot-cli init'.")
        return self

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path", "require_account"}
        return {key for key in cls.model_fields if key not in internal_fields}
