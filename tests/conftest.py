"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Shared fixtures available to all test modules
- A fake upstream built on httpx.MockTransport
- Test environment setup
"""

import os
import sys
from pathlib import Path
from typing import Callable, List

import httpx
import pytest

# Add parent directory to Python path so tests can import project modules
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Ensure test environment variables are set early enough (during test collection),
# because the app loads config at import time.
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_PATH", "/tmp/you2api_test.log")
os.environ.setdefault("LOG_COLOR", "false")
os.environ.setdefault("STREAM_CHUNK_DELAY_S", "0")

from config import AppConfig  # noqa: E402


@pytest.fixture
def test_config():
    """Create test configuration."""
    return AppConfig(
        vendor_base_url="https://you.test/api/streamingSearch",
        vendor_origin="https://you.test",
        market="zh-HK",
        cors_relay_url="https://relay.test/",
        cors_relay_api_key="relay-key",
        alternate_relays=(
            "https://alt1.test/",
            "https://alt2.test/raw?url=",
        ),
        primary_timeout_s=300.0,
        fallback_timeout_s=30.0,
        stream_chunk_delay_s=0.0,
        fallback_mode=False,
        debug=False,
        port=8000,
        log_level="INFO",
        max_request_bytes=2_000_000,
        log_path="/tmp/you2api_test.log",
        user_agent="test-agent",
    )


class FakeUpstream:
    """Record outbound requests and answer them with a handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: List[httpx.Request] = []
        self._handler = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def hosts(self) -> List[str]:
        return [r.url.host for r in self.requests]


@pytest.fixture
def fake_upstream():
    """Factory: fake_upstream(handler) -> FakeUpstream."""
    return FakeUpstream
