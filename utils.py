"""Utility functions for You2Api."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from logger import mask_secret

log = logging.getLogger("you2api")


def load_env_files() -> None:
    """Load .env files from program and current directory."""
    this_dir = Path(__file__).resolve().parent
    p1 = this_dir / ".env"
    p2 = Path.cwd() / ".env"

    loaded_any = False
    if p1.exists():
        loaded_any = load_dotenv(dotenv_path=str(p1), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p1))
    else:
        log.info("No .env in program directory: %s", str(p1))

    if p2.exists() and p2 != p1:
        loaded_any = load_dotenv(dotenv_path=str(p2), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p2))
    elif p2 != p1:
        log.info("No .env in current directory: %s", str(p2))

    if not loaded_any:
        log.info(".env not loaded (not found or no variables applied).")


def dump_config(config) -> None:
    """Log effective configuration at startup."""
    log.info("=== You2Api startup config ===")
    log.info("YOU_BASE_URL=%s", config.vendor_base_url)
    log.info("YOU_ORIGIN=%s", config.vendor_origin)
    log.info("YOU_MARKET=%s", config.market)
    log.info("CORS_RELAY_URL=%s", config.cors_relay_url)
    log.info(
        "CORS_RELAY_API_KEY_set=%s value=%s len=%s",
        bool(config.cors_relay_api_key),
        mask_secret(config.cors_relay_api_key),
        len(config.cors_relay_api_key or ""),
    )
    log.info("ALTERNATE_RELAYS=%s", list(config.alternate_relays))
    log.info("PRIMARY_TIMEOUT_S=%s", config.primary_timeout_s)
    log.info("FALLBACK_TIMEOUT_S=%s", config.fallback_timeout_s)
    log.info("STREAM_CHUNK_DELAY_S=%s", config.stream_chunk_delay_s)
    log.info("FALLBACK_MODE=%s", config.fallback_mode)
    log.info("DEBUG=%s", config.debug)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("LOG_PATH=%s", config.log_path)
    log.info("USER_AGENT=%s", config.user_agent)
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("ProgramDir=%s", str(Path(__file__).resolve().parent))
    log.info("===============================")
