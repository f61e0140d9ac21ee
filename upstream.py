"""Upstream vendor communication: query variants, relays and the retrieval fallback chain."""

from __future__ import annotations

import json
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from types import MappingProxyType
from typing import AsyncGenerator, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote, urlencode

import httpx

from config import AppConfig
from sse_handler import iter_tokens

log = logging.getLogger("you2api")

RELAY_KEY_HEADER = "x-cors-api-key"

RELAY_DIRECT = "direct"
RELAY_PREFIX = "prefix"    # relay URL + raw target URL
RELAY_ENCODED = "encoded"  # relay URL + percent-encoded target URL

PROFILE_FULL = "full"
PROFILE_STANDARD = "standard"
PROFILE_MINIMAL = "minimal"

HEADERS_BROWSER = "browser"
HEADERS_RELAY_BROWSER = "relay_browser"
HEADERS_RELAY_KEY = "relay_key"
HEADERS_DIRECT = "direct"
HEADERS_NONE = "none"


@dataclass(frozen=True)
class Relay:
    """How a target URL is routed: directly or through a CORS relay service."""

    name: str
    url: str = ""
    style: str = RELAY_DIRECT

    def wrap(self, target: str) -> str:
        if self.style == RELAY_PREFIX:
            return self.url + target
        if self.style == RELAY_ENCODED:
            return self.url + quote(target, safe="")
        return target


DIRECT = Relay("direct")


def _frozen(d: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(d))


@dataclass(frozen=True)
class VendorQueryVariant:
    """One fully-formed upstream request: endpoint, query parameters, headers and routing."""

    endpoint: str
    parameters: Mapping[str, str]
    headers: Mapping[str, str]
    relay: Relay = DIRECT
    timeout_s: float = 30.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", _frozen(self.parameters))
        object.__setattr__(self, "headers", _frozen(self.headers))

    def target_url(self) -> str:
        return f"{self.endpoint}?{urlencode(list(self.parameters.items()))}"

    def url(self) -> str:
        return self.relay.wrap(self.target_url())


@dataclass(frozen=True)
class StrategyDescriptor:
    """
    One step of the fallback chain, as plain data.

    A strategy fans out to one variant per relay; all of them share the
    parameter profile, header set and timeout.
    """

    name: str
    profile: str
    header_set: str
    relays: Tuple[Relay, ...] = (DIRECT,)
    timeout_s: float = 30.0


def encode_history(history: Sequence[Mapping[str, str]]) -> str:
    """Serialize the question/answer history as a compact JSON array."""
    return json.dumps(list(history), ensure_ascii=False, separators=(",", ":"))


class QueryBuilder:
    """Build vendor query variants from a message, history and vendor model."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def cors_relay(self) -> Relay:
        return Relay("cors-relay", self._config.cors_relay_url, RELAY_PREFIX)

    def alternate_relays(self) -> Tuple[Relay, ...]:
        return tuple(
            Relay(f"alternate-{i}", url, RELAY_ENCODED)
            for i, url in enumerate(self._config.alternate_relays, start=1)
        )

    def parameters(
        self,
        profile: str,
        message: str,
        history: Sequence[Mapping[str, str]],
        vendor_model: str,
    ) -> Dict[str, str]:
        """Query parameters for a profile. Message text is passed through untouched."""
        if profile == PROFILE_MINIMAL:
            return {"q": message, "domain": "youchat", "selectedAiModel": vendor_model}

        if profile == PROFILE_STANDARD:
            return {
                "q": message,
                "page": "1",
                "count": "10",
                "safeSearch": "Moderate",
                "mkt": self._config.market,
                "domain": "youchat",
                "selectedAiModel": vendor_model,
                "selectedChatMode": "custom",
            }

        if profile == PROFILE_FULL:
            return {
                "q": message,
                "page": "1",
                "count": "10",
                "safeSearch": "Moderate",
                "mkt": self._config.market,
                "enable_worklow_generation_ux": "true",
                "domain": "youchat",
                "use_personalization_extraction": "true",
                "pastChatLength": str(len(history) - 1),
                "selectedChatMode": "custom",
                "selectedAiModel": vendor_model,
                "enable_agent_clarification_questions": "true",
                "use_nested_youchat_updates": "true",
                "chat": encode_history(history),
            }

        raise ValueError(f"Unknown parameter profile: {profile!r}")

    def headers(self, header_set: str) -> Dict[str, str]:
        cfg = self._config
        origin = cfg.vendor_origin.rstrip("/")
        relay_key = {RELAY_KEY_HEADER: cfg.cors_relay_api_key} if cfg.cors_relay_api_key else {}

        if header_set == HEADERS_BROWSER:
            return {
                **relay_key,
                "User-Agent": cfg.user_agent,
                "Accept": "text/event-stream",
                "Accept-Language": "en-US,en;q=0.9",
                "Accept-Encoding": "gzip, deflate",
                "Referer": origin + "/",
                "Origin": origin,
                "DNT": "1",
                "Sec-Fetch-Dest": "empty",
                "Sec-Fetch-Mode": "cors",
                "Sec-Fetch-Site": "same-origin",
                "sec-ch-ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
                "sec-ch-ua-mobile": "?0",
                "sec-ch-ua-platform": '"Windows"',
            }
        if header_set == HEADERS_RELAY_BROWSER:
            return {**relay_key, "User-Agent": cfg.user_agent}
        if header_set == HEADERS_RELAY_KEY:
            return dict(relay_key)
        if header_set == HEADERS_DIRECT:
            return {"User-Agent": cfg.user_agent, "Referer": origin + "/", "Origin": origin}
        if header_set == HEADERS_NONE:
            return {}

        raise ValueError(f"Unknown header set: {header_set!r}")

    def build(
        self,
        message: str,
        history: Sequence[Mapping[str, str]],
        vendor_model: str,
        *,
        profile: str,
        header_set: str,
        relay: Relay = DIRECT,
        timeout_s: float = 30.0,
    ) -> VendorQueryVariant:
        return VendorQueryVariant(
            endpoint=self._config.vendor_base_url,
            parameters=self.parameters(profile, message, history, vendor_model),
            headers=self.headers(header_set),
            relay=relay,
            timeout_s=timeout_s,
        )

    def primary_variant(
        self,
        message: str,
        history: Sequence[Mapping[str, str]],
        vendor_model: str,
    ) -> VendorQueryVariant:
        """Full-parameter, live-streamed call through the CORS relay."""
        return self.build(
            message,
            history,
            vendor_model,
            profile=PROFILE_FULL,
            header_set=HEADERS_BROWSER,
            relay=self.cors_relay,
            timeout_s=self._config.primary_timeout_s,
        )

    def variants(
        self,
        strategy: StrategyDescriptor,
        message: str,
        history: Sequence[Mapping[str, str]],
        vendor_model: str,
    ) -> List[VendorQueryVariant]:
        return [
            self.build(
                message,
                history,
                vendor_model,
                profile=strategy.profile,
                header_set=strategy.header_set,
                relay=relay,
                timeout_s=strategy.timeout_s,
            )
            for relay in strategy.relays
        ]

    def default_strategies(self) -> Tuple[StrategyDescriptor, ...]:
        """The ordered fallback chain tried after the primary call comes back empty."""
        timeout = self._config.fallback_timeout_s
        return (
            StrategyDescriptor("original", PROFILE_STANDARD, HEADERS_RELAY_BROWSER, (self.cors_relay,), timeout),
            StrategyDescriptor("simplified", PROFILE_MINIMAL, HEADERS_RELAY_KEY, (self.cors_relay,), timeout),
            StrategyDescriptor("alternative-proxy", PROFILE_MINIMAL, HEADERS_NONE, self.alternate_relays(), timeout),
            StrategyDescriptor("direct", PROFILE_MINIMAL, HEADERS_DIRECT, (DIRECT,), timeout),
        )


class UpstreamClient:
    """Handle communication with the vendor search endpoint."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    async def stream_tokens(
        self,
        client: httpx.AsyncClient,
        variant: VendorQueryVariant,
        label: str = "primary",
    ) -> AsyncGenerator[str, None]:
        """
        Issue one GET and yield extracted tokens as the body arrives.

        Transport errors and non-2xx statuses end the generator without
        raising; the caller sees them as empty content. The upstream response
        is always closed, including when the consumer stops early.
        """
        url = variant.url()
        log.debug("Upstream %s relay=%s url=%s", label, variant.relay.name, url[:500])

        t0 = time.time()
        try:
            req = client.build_request(
                "GET", url, headers=dict(variant.headers), timeout=variant.timeout_s
            )
            resp = await client.send(req, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            log.warning("Upstream %s relay=%s request failed: %r", label, variant.relay.name, e)
            return

        dt = (time.time() - t0) * 1000
        log.info(
            "Upstream %s relay=%s status=%s ms=%.1f",
            label,
            variant.relay.name,
            resp.status_code,
            dt,
        )

        try:
            if not resp.is_success:
                snippet = await self.read_error_snippet(resp)
                log.warning(
                    "Upstream %s relay=%s non-2xx status=%s body=%r",
                    label,
                    variant.relay.name,
                    resp.status_code,
                    snippet[:200],
                )
                return
            async with aclosing(iter_tokens(resp.aiter_lines())) as tokens:
                async for token in tokens:
                    yield token
        except httpx.HTTPError as e:
            log.warning("Upstream %s relay=%s stream broken: %r", label, variant.relay.name, e)
        finally:
            await resp.aclose()

    async def fetch_content(
        self,
        client: httpx.AsyncClient,
        variant: VendorQueryVariant,
        label: str = "fallback",
    ) -> str:
        """Accumulated content of one variant, or "" on any upstream failure."""
        parts: List[str] = []
        async with aclosing(self.stream_tokens(client, variant, label)) as tokens:
            async for token in tokens:
                parts.append(token)
        return "".join(parts)

    @staticmethod
    async def read_error_snippet(resp: httpx.Response, limit: int = 2000) -> str:
        """Best-effort: read a small error body."""
        try:
            raw = await resp.aread()
        except httpx.HTTPError:
            return ""
        return raw.decode("utf-8", errors="replace")[:limit]


@dataclass(frozen=True)
class RetrievalResult:
    content: str
    strategy: Optional[str] = None
    attempts: int = 0

    @property
    def found(self) -> bool:
        return bool(self.content)


class MultiStrategyRetriever:
    """
    Try each strategy's variants strictly in order, once each, and stop at the
    first non-empty content. Exhaustion is reported as an empty result, not an error.
    """

    def __init__(
        self,
        builder: QueryBuilder,
        upstream: UpstreamClient,
        strategies: Optional[Sequence[StrategyDescriptor]] = None,
    ) -> None:
        self._builder = builder
        self._upstream = upstream
        self.strategies: Tuple[StrategyDescriptor, ...] = tuple(
            builder.default_strategies() if strategies is None else strategies
        )

    async def retrieve(
        self,
        client: httpx.AsyncClient,
        message: str,
        history: Sequence[Mapping[str, str]],
        vendor_model: str,
    ) -> RetrievalResult:
        attempts = 0
        for i, strategy in enumerate(self.strategies, start=1):
            log.info("Trying method %d (%s)...", i, strategy.name)
            for variant in self._builder.variants(strategy, message, history, vendor_model):
                attempts += 1
                content = await self._upstream.fetch_content(client, variant, label=strategy.name)
                if content:
                    log.info(
                        "Method %d (%s) succeeded relay=%s content_len=%d",
                        i,
                        strategy.name,
                        variant.relay.name,
                        len(content),
                    )
                    return RetrievalResult(content, strategy.name, attempts)

        log.warning("All methods failed attempts=%d", attempts)
        return RetrievalResult("", None, attempts)
