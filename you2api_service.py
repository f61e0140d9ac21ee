"""
You2Api service (OpenAI-compatible) -> You.com conversational search as upstream.

Request flow:
  - primary: one long-lived, fully-parameterised call through the CORS relay,
    whose tokens are re-framed as OpenAI chunks as they arrive
  - fallback chain: relay/simplified/alternate-relay/direct variants, tried once each
  - heuristic: keyword-matched canned reply when every upstream path is empty

Every well-formed request gets a 200 response; upstream failures are only
visible in the logs.
"""

from __future__ import annotations

import uuid
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

import httpx
from fastapi import FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from config import load_config
from fallback import generate_fallback_response
from logger import setup_logging, setup_traffic_logging
from models import ChatRequest, ModelNameMap
from sse_handler import ResponseFramer, build_completion_response
from upstream import MultiStrategyRetriever, QueryBuilder, UpstreamClient
from utils import dump_config, load_env_files

# Load environment
load_env_files()

# Load configuration
config = load_config()
config.validate()

# Initialize logging
log = setup_logging(config.log_path)
traffic_log = setup_traffic_logging(config.debug)
dump_config(config)

# Process-wide, read-only after this point.
model_map = ModelNameMap.from_table()
query_builder = QueryBuilder(config)
upstream_client = UpstreamClient(config)
retriever = MultiStrategyRetriever(query_builder, upstream_client)

FALLBACK_MODE_DEFAULT_MODEL = "gpt-4o"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}

STATUS_PAYLOAD = {
    "status": "You2Api Service Running...",
    "message": "OpenAI-compatible endpoint: POST /v1/chat/completions",
}
FALLBACK_STATUS_PAYLOAD = {
    "status": "You2Api Fallback Service Running...",
    "message": "Enhanced compatibility mode",
}


def _create_http_client() -> httpx.AsyncClient:
    """Outbound client for one inbound request; per-attempt timeouts come from each variant."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.fallback_timeout_s),
        follow_redirects=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan context manager for FastAPI application.

    The model table and strategy chain are built at import; this only reports them.
    """
    log.info(
        "You2Api ready mode=%s models=%d strategies=%s",
        "fallback" if config.fallback_mode else "primary",
        len(model_map.public_models()),
        [s.name for s in retriever.strategies],
    )
    yield
    log.info("You2Api shutting down")


app = FastAPI(
    title="you2api-service",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_bearer(authorization: Optional[str], client_ip: str) -> str:
    """Return the bearer token, or reject with 401."""
    if not authorization or not authorization.startswith("Bearer "):
        log.warning("Missing or invalid authorization header from IP: %s", client_ip)
        raise HTTPException(status_code=401, detail="Missing or invalid authorization header")
    return authorization[len("Bearer "):]


async def _parse_chat_request(request: Request) -> ChatRequest:
    """Decode and validate the inbound body; every failure is a 4xx."""
    # Basic request size guard (prevents trivial DoS via huge JSON bodies).
    cl = request.headers.get("content-length")
    if cl:
        try:
            n = int(cl)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid Content-Length header: {cl!r}",
            )
        if n < 0:
            raise HTTPException(
                status_code=400,
                detail="Invalid Content-Length: must be non-negative",
            )
        if n > config.max_request_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Request too large: {n} bytes (max {config.max_request_bytes})",
            )

    try:
        body = await request.json()
    except ValueError:
        log.warning("Failed to decode request body")
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        return ChatRequest.from_body(body)
    except ValueError as e:
        log.warning("Rejected request: %s", e)
        raise HTTPException(status_code=400, detail=str(e))


def _sse_response(gen: AsyncGenerator[bytes, None]) -> StreamingResponse:
    return StreamingResponse(
        gen,
        media_type="text/event-stream",
        headers={**SSE_HEADERS, **CORS_HEADERS},
    )


def _json_response(content: str, model_id: str) -> JSONResponse:
    return JSONResponse(build_completion_response(content, model_id), headers=CORS_HEADERS)


async def _fallback_content(
    client: httpx.AsyncClient,
    chat: ChatRequest,
    vendor_model: str,
    req_id: str,
) -> str:
    """Walk the retrieval chain, then the heuristic responder. Never empty."""
    result = await retriever.retrieve(client, chat.last_message, chat.history(), vendor_model)
    if result.found:
        log.info(
            "Fallback content from strategy=%s attempts=%d len=%d req_id=%s",
            result.strategy,
            result.attempts,
            len(result.content),
            req_id,
        )
        return result.content
    log.info("Using generated fallback response req_id=%s", req_id)
    return generate_fallback_response(chat.last_message)


async def handle_chat_request(
    client: httpx.AsyncClient,
    chat: ChatRequest,
    req_id: str,
) -> Response:
    """Primary handler: live upstream stream first, then the fallback chain."""
    vendor_model = model_map.to_vendor_model(chat.model)
    model_id = chat.response_model(model_map)
    variant = query_builder.primary_variant(chat.last_message, chat.history(), vendor_model)

    if not chat.stream:
        try:
            content = await upstream_client.fetch_content(client, variant, label="primary")
            if not content:
                log.info("Primary non-stream method returned empty content, trying fallback... req_id=%s", req_id)
                content = await _fallback_content(client, chat, vendor_model, req_id)
        finally:
            await client.aclose()
        log.info("Non-stream response req_id=%s content_len=%d", req_id, len(content))
        return _json_response(content, model_id)

    framer = ResponseFramer(model_id, chunk_delay_s=config.stream_chunk_delay_s)

    async def gen() -> AsyncGenerator[bytes, None]:
        try:
            async with aclosing(upstream_client.stream_tokens(client, variant, "primary")) as tokens:
                async for b in framer.stream_tokens(tokens):
                    yield b

            if framer.emitted == 0:
                log.info("Primary stream method returned empty content, trying fallback... req_id=%s", req_id)
                content = await _fallback_content(client, chat, vendor_model, req_id)
                async for b in framer.stream_words(content):
                    yield b

            for b in framer.finish():
                yield b
            log.info("Stream response req_id=%s chunks=%d", req_id, framer.emitted)
        finally:
            await client.aclose()

    return _sse_response(gen())


async def handle_fallback_request(
    client: httpx.AsyncClient,
    chat: ChatRequest,
    req_id: str,
) -> Response:
    """Simplified handler: no live primary call, accumulate then frame."""
    model_id = chat.model or FALLBACK_MODE_DEFAULT_MODEL
    vendor_model = model_map.to_vendor_model(model_id)

    try:
        content = await _fallback_content(client, chat, vendor_model, req_id)
    finally:
        await client.aclose()

    if chat.stream:
        framer = ResponseFramer(model_id, chunk_delay_s=config.stream_chunk_delay_s)
        return _sse_response(framer.stream_text(content))
    return _json_response(content, model_id)


@app.options("/{path:path}")
async def preflight(path: str) -> Response:
    """Permissive CORS answer for any path."""
    return Response(status_code=200, headers=CORS_HEADERS)


@app.post("/v1/chat/completions")
async def v1_chat_completions(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> Response:
    """Handle chat completion requests."""
    client_ip = request.client.host if request.client else "unknown"
    token = _require_bearer(authorization, client_ip)
    chat = await _parse_chat_request(request)

    req_id = (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or uuid.uuid4().hex
    )

    log.info(
        "Processing request req_id=%s from=%s model=%r messages=%d stream=%s token_len=%d",
        req_id,
        client_ip,
        chat.model,
        len(chat.messages),
        chat.stream,
        len(token),
    )

    client = _create_http_client()
    try:
        if config.fallback_mode:
            return await handle_fallback_request(client, chat, req_id)
        return await handle_chat_request(client, chat, req_id)
    except Exception:
        await client.aclose()
        raise


@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"])
async def service_status(path: str) -> Dict[str, Any]:
    """Static status for every path other than the chat endpoint."""
    return FALLBACK_STATUS_PAYLOAD if config.fallback_mode else STATUS_PAYLOAD


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
