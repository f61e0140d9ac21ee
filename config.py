"""Configuration management for You2Api service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple

DEFAULT_ALTERNATE_RELAYS: Tuple[str, ...] = (
    "https://cors-anywhere.herokuapp.com/",
    "https://api.allorigins.win/raw?url=",
    "https://thingproxy.freeboard.io/fetch/",
)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    """Get float environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v


def _csv_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Parse comma-separated environment variable into an ordered tuple."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return tuple(x.strip() for x in v.split(",") if x.strip())


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    # Vendor endpoint
    vendor_base_url: str
    vendor_origin: str
    market: str

    # CORS relays
    cors_relay_url: str
    cors_relay_api_key: str
    alternate_relays: Tuple[str, ...]

    # Timeouts and pacing
    primary_timeout_s: float
    fallback_timeout_s: float
    stream_chunk_delay_s: float

    # Handler selection / verbose traffic logging
    fallback_mode: bool
    debug: bool

    # Server settings
    port: int
    log_level: str
    max_request_bytes: int
    log_path: str
    user_agent: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            vendor_base_url=_env_str("YOU_BASE_URL", "https://you.com/api/streamingSearch"),
            vendor_origin=_env_str("YOU_ORIGIN", "https://you.com"),
            market=_env_str("YOU_MARKET", "zh-HK"),
            cors_relay_url=_env_str("CORS_RELAY_URL", "https://proxy.cors.sh/"),
            cors_relay_api_key=os.getenv("CORS_RELAY_API_KEY", ""),
            alternate_relays=_csv_list("ALTERNATE_RELAYS", DEFAULT_ALTERNATE_RELAYS),
            primary_timeout_s=_env_float("PRIMARY_TIMEOUT_S", 300.0),
            fallback_timeout_s=_env_float("FALLBACK_TIMEOUT_S", 30.0),
            stream_chunk_delay_s=_env_float("STREAM_CHUNK_DELAY_S", 0.05),
            fallback_mode=_env_bool("USE_FALLBACK", False) or _env_bool("FALLBACK_MODE", False),
            debug=_env_bool("DEBUG", False),
            port=_env_int("PORT", 8000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper().strip(),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 2_000_000),  # ~2MB
            log_path=_env_str("LOG_PATH", "/var/log/you2api/you2api.log"),
            user_agent=_env_str("USER_AGENT", DEFAULT_USER_AGENT),
        )

    def validate(self) -> None:
        """Validate configuration."""
        if not self.vendor_base_url:
            raise ValueError("YOU_BASE_URL must be non-empty")
        if self.primary_timeout_s <= 0:
            raise ValueError("PRIMARY_TIMEOUT_S must be > 0")
        if self.fallback_timeout_s <= 0:
            raise ValueError("FALLBACK_TIMEOUT_S must be > 0")
        if self.stream_chunk_delay_s < 0:
            raise ValueError("STREAM_CHUNK_DELAY_S must be >= 0")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if not self.log_path:
            raise ValueError("LOG_PATH must be non-empty")
        if not self.user_agent:
            raise ValueError("USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
