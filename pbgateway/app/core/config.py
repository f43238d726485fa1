import json
import re
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # Prefer JSON, but tolerate comma/space separated values
    if raw.startswith(("[", '"')):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()

    origins: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if not part:
            continue
        if part == "*":
            return ["*"]
        if part not in origins:
            origins.append(part)
    return origins


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - adds exception messages to 500 responses
    debug: bool = False

    # Rate limiting (token bucket, per client address)
    rate_limit_rpm: int = Field(default=60, validation_alias="RATE_LIMIT_RPM")
    rate_limit_burst: int = Field(default=10, validation_alias="RATE_LIMIT_BURST")
    rate_limit_idle_seconds: float = 120.0  # Buckets idle longer than this are reaped
    rate_limit_sweep_seconds: float = 60.0  # Reaper cadence

    # Declared Content-Length ceiling for /mcp
    max_body_size: int = 10 * 1024 * 1024

    # Backend URL validation
    dns_timeout: float = 5.0
    dns_fail_closed: bool = False  # If True, reject hosts whose A lookup fails

    # Use the first X-Forwarded-For entry as client identity
    trust_proxy_headers: bool = False

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 30.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("rate_limit_rpm", "rate_limit_burst")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_idle_seconds", "rate_limit_sweep_seconds")
    @classmethod
    def validate_reaper_intervals(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Reaper intervals must be positive")
        return v

    @field_validator("max_body_size")
    @classmethod
    def validate_max_body_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_body_size must be at least 1 byte")
        return v

    @field_validator(
        "dns_timeout",
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )


# Global settings instance
settings = Settings()
