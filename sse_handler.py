"""Server-Sent Events (SSE) handling: vendor token extraction and OpenAI re-framing."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import (
    Any,
    AsyncGenerator,
    AsyncIterable,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    Optional,
    Tuple,
    Union,
)

log = logging.getLogger("you2api")
traffic_log = logging.getLogger("you2api.traffic")

DONE_SENTINEL = "[DONE]"
EMPTY_FRAME = "{}"

PathKey = Union[str, int]

# Ordered probes: the first one resolving to a non-empty string is the token.
# The vendor frame schema is undocumented and drifts, hence the wide net.
TOKEN_PROBES: Tuple[Tuple[str, Tuple[PathKey, ...]], ...] = (
    ("youChatToken", ("youChatToken",)),
    ("text", ("text",)),
    ("message", ("message",)),
    ("content", ("content",)),
    ("answer", ("answer",)),
    ("response", ("response",)),
    ("completion", ("completion",)),
    ("output", ("output",)),
    ("result", ("result",)),
    ("reply", ("reply",)),
    ("data", ("data",)),
    ("delta.content", ("delta", "content")),
    ("choices[0].message.content", ("choices", 0, "message", "content")),
    ("choices[0].delta.content", ("choices", 0, "delta", "content")),
)


def _resolve(obj: Any, path: Tuple[PathKey, ...]) -> Any:
    cur = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or len(cur) <= key:
                return None
            cur = cur[key]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(key)
    return cur


def extract_token(obj: Any) -> Optional[str]:
    """Pull the text token out of one parsed vendor frame, or None."""
    if not isinstance(obj, dict):
        return None
    for _label, path in TOKEN_PROBES:
        value = _resolve(obj, path)
        if isinstance(value, str) and value:
            return value
    return None


def line_payload(line: str) -> str:
    """Strip line endings and an optional `data:` field prefix."""
    line = line.rstrip("\r\n")
    if line.startswith("data:"):
        return line[len("data:"):].strip()
    return line.strip()


def is_done_data_line(line: str) -> bool:
    """
    Accept: "data:[DONE]" / "data: [DONE]" / bare "[DONE]" (tolerate whitespace)
    """
    return line_payload(line) == DONE_SENTINEL


def extract_line_token(line: str) -> Optional[str]:
    """
    Extract at most one token from a single SSE or raw JSON line.

    Sentinel, blank and `{}` payloads yield nothing; unparseable lines are
    skipped without affecting the rest of the stream.
    """
    traffic_log.debug("Raw line: %s", line)
    payload = line_payload(line)
    if not payload or payload in (DONE_SENTINEL, EMPTY_FRAME):
        return None
    try:
        obj = json.loads(payload)
    except (ValueError, RecursionError) as e:
        traffic_log.debug("Skipping unparseable line: %s data=%r", e, payload[:200])
        return None

    token = extract_token(obj)
    if token is None:
        keys = sorted(obj.keys()) if isinstance(obj, dict) else type(obj).__name__
        traffic_log.debug("No token in frame keys=%s", keys)
    return token


async def iter_tokens(lines: AsyncIterable[str]) -> AsyncGenerator[str, None]:
    """Yield tokens in arrival order until the stream ends or sends [DONE]."""
    async for line in lines:
        if is_done_data_line(line):
            traffic_log.debug("Stream end sentinel received")
            break
        token = extract_line_token(line)
        if token:
            yield token


# ============================================================================
# OpenAI framing
# ============================================================================

def new_response_id(now: Optional[float] = None) -> str:
    """Time-based completion id."""
    return f"chatcmpl-{int(time.time() if now is None else now)}"


def create_chunk_dict(
    resp_id: str,
    created: int,
    model_id: str,
    content: str,
    finish_reason: str | None = None,
) -> dict:
    """Create a standard OpenAI chat completion chunk dictionary."""
    return {
        "id": resp_id,
        "object": "chat.completion.chunk",
        "created": created,
        "model": model_id,
        "choices": [{"index": 0, "delta": {"content": content}, "finish_reason": finish_reason}],
    }


def build_completion_response(content: str, model_id: str) -> Dict[str, Any]:
    """Non-streaming OpenAI chat.completion object with a single choice."""
    now = time.time()
    return {
        "id": new_response_id(now),
        "object": "chat.completion",
        "created": int(now),
        "model": model_id,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


def sse_data(obj: dict) -> bytes:
    """Encode dict as SSE data event."""
    return f"data: {json.dumps(obj, ensure_ascii=False)}\n\n".encode("utf-8")


def sse_done() -> bytes:
    """SSE [DONE] event."""
    return b"data: [DONE]\n\n"


class ResponseFramer:
    """
    Render content as an OpenAI chat.completion.chunk SSE stream.

    One framer serves one response: the id and creation timestamp are fixed
    at construction and shared by every chunk it emits. The pacing delay only
    applies between simulated words, never to live upstream tokens.
    """

    def __init__(
        self,
        model_id: str,
        *,
        chunk_delay_s: float = 0.05,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        now = time.time()
        self.model_id = model_id
        self.response_id = new_response_id(now)
        self.created = int(now)
        self.chunk_delay_s = chunk_delay_s
        self.emitted = 0
        self._sleep = sleep

    def chunk(self, content: str, finish_reason: str | None = None) -> bytes:
        if content:
            self.emitted += 1
        return sse_data(
            create_chunk_dict(self.response_id, self.created, self.model_id, content, finish_reason)
        )

    def finish(self) -> Iterator[bytes]:
        """Terminal empty chunk with finish_reason=stop, then the [DONE] sentinel."""
        yield self.chunk("", "stop")
        yield sse_done()

    async def stream_words(self, content: str) -> AsyncGenerator[bytes, None]:
        """One chunk per whitespace-delimited word, paced, without the terminal chunk."""
        words = (content or "").split()
        for i, word in enumerate(words):
            if i and self.chunk_delay_s > 0:
                await self._sleep(self.chunk_delay_s)
            yield self.chunk(word + " ")

    async def stream_tokens(self, tokens: AsyncIterable[str]) -> AsyncGenerator[bytes, None]:
        """Re-frame already-extracted live tokens as they arrive, without the terminal chunk."""
        async for token in tokens:
            yield self.chunk(token)

    async def stream_text(self, content: str) -> AsyncGenerator[bytes, None]:
        """Complete simulated stream for an accumulated string."""
        async for b in self.stream_words(content):
            yield b
        for b in self.finish():
            yield b
