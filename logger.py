"""Logging configuration for You2Api service."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import colorlog

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s - %(message)s"


def setup_logging(log_path: str) -> logging.Logger:
    """
    Attach one rotating file handler (1 MB x 3) to the `you2api` logger.

    Level comes from LOG_LEVEL; DISABLE silences the service entirely.
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").upper().strip()
    logger = logging.getLogger("you2api")
    logger.handlers.clear()
    logger.propagate = False

    if level_name == "DISABLE":
        logging.disable(logging.CRITICAL)
        logger.addHandler(logging.NullHandler())
        return logger

    logging.disable(logging.NOTSET)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    handler, open_err = _create_log_handler(log_path)
    handler.setFormatter(_create_log_formatter())
    logger.addHandler(handler)
    if open_err is not None:
        logger.warning("Cannot open log file %r (%s), logging to stderr", log_path, open_err)
    return logger


def setup_traffic_logging(enabled: bool) -> logging.Logger:
    """
    Configure the raw upstream traffic logger (DEBUG mode only).

    The traffic logger is a child of the service logger, so its records reach
    the same handlers. When disabled it is pinned above CRITICAL.
    """
    traffic = logging.getLogger("you2api.traffic")
    traffic.setLevel(logging.DEBUG if enabled else logging.CRITICAL + 1)
    if enabled:
        traffic.debug("Traffic logger enabled")
    return traffic


def _create_log_handler(log_path: str) -> tuple[logging.Handler, Exception | None]:
    """Create log handler with fallback to StreamHandler on error."""
    try:
        return RotatingFileHandler(
            log_path,
            maxBytes=1_048_576,  # 1 MB
            backupCount=3,
            encoding="utf-8",
        ), None
    except OSError as e:
        return logging.StreamHandler(), e


def _create_log_formatter() -> logging.Formatter:
    """Create log formatter, colored unless LOG_COLOR is off."""
    if os.getenv("LOG_COLOR", "true").lower() in ("true", "1", "yes"):
        return colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s %(levelname)-8s%(reset)s %(name)s - %(message)s",
            log_colors={
                'DEBUG': 'cyan',
                'INFO': 'green',
                'WARNING': 'yellow',
                'ERROR': 'red',
                'CRITICAL': 'red,bg_white',
            },
        )
    return logging.Formatter(PLAIN_FORMAT)


def mask_secret(s: str, keep_start: int = 6, keep_end: int = 4) -> str:
    """Mask a secret string, keeping only start and end characters."""
    s = (s or "").strip()
    if not s:
        return ""
    if len(s) <= keep_start + keep_end:
        return "*" * len(s)
    return f"{s[:keep_start]}...{s[-keep_end:]}"
