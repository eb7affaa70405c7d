from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from cellgate.services.gcra.models import RateSpec


class Settings(BaseSettings):
    """Limiter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Redis settings
    redis_enabled: bool = True
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 1.0  # Per-command socket timeout in seconds
    redis_connect_timeout: float = 1.0

    # Key layout: one store key per rate-limited identifier
    rate_limit_key_prefix: str = "rate:"

    # Deadline for the single store round trip of each decision
    rate_limit_timeout_seconds: float = 0.5

    # Default rate applied by integrations that do not pass their own spec
    rate_limit_default_permitted: int = 60
    rate_limit_default_period_seconds: float = 60.0
    rate_limit_default_burst: int | None = None  # None = same as permitted

    # Integration policy when the store is unavailable.
    # The limiter itself never chooses; middleware reads this flag.
    rate_limit_fail_closed: bool = False

    # Clock skew between this process and the store, in milliseconds
    clock_skew_tolerance_ms: int = 250

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_default_permitted", "clock_skew_tolerance_ms")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate integer values are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("rate_limit_default_burst")
    @classmethod
    def validate_burst(cls, v: int | None) -> int | None:
        """Validate burst is positive when set."""
        if v is not None and v < 1:
            raise ValueError("rate_limit_default_burst must be at least 1")
        return v

    @field_validator(
        "rate_limit_default_period_seconds",
        "rate_limit_timeout_seconds",
        "redis_socket_timeout",
        "redis_connect_timeout",
    )
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("durations must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"text", "structured", "json"}:
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    def default_rate_spec(self) -> "RateSpec":
        """Build the RateSpec described by the rate_limit_default_* settings."""
        from cellgate.services.gcra.models import RateSpec

        return RateSpec.per_period(
            self.rate_limit_default_permitted,
            self.rate_limit_default_period_seconds,
            burst=self.rate_limit_default_burst,
        )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
