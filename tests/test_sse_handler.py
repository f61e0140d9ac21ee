"""
Tests for SSE (Server-Sent Events) handler module.

Tests cover:
- Vendor line parsing and token extraction
- Field probing priority
- Stream folding and [DONE] handling
- OpenAI chunk framing and pacing
"""

import json

import pytest

from sse_handler import (
    ResponseFramer,
    build_completion_response,
    extract_line_token,
    extract_token,
    is_done_data_line,
    iter_tokens,
    line_payload,
)


async def _aiter(items):
    for item in items:
        yield item


async def _collect(agen):
    return [b async for b in agen]


def _decode_frames(chunks):
    """Split emitted bytes into parsed chunk dicts plus raw sentinel lines."""
    out = []
    for raw in b"".join(chunks).decode("utf-8").split("\n\n"):
        if not raw:
            continue
        assert raw.startswith("data: ")
        payload = raw[len("data: "):]
        out.append(payload if payload == "[DONE]" else json.loads(payload))
    return out


# ============================================================================
# Line Parsing Tests
# ============================================================================

class TestLineParsing:
    """Test per-line token extraction."""

    def test_line_payload(self):
        assert line_payload('data: {"a":1}\r\n') == '{"a":1}'
        assert line_payload('data:{"a":1}') == '{"a":1}'
        assert line_payload('{"a":1}') == '{"a":1}'
        assert line_payload("") == ""

    def test_is_done_data_line(self):
        assert is_done_data_line("data: [DONE]") is True
        assert is_done_data_line("data:[DONE]") is True
        assert is_done_data_line("[DONE]") is True
        assert is_done_data_line("data: [DONE] extra") is False
        assert is_done_data_line('data: {"youChatToken":"[DONE]"}') is False

    def test_vendor_token(self):
        assert extract_line_token('data: {"youChatToken":"hi"}') == "hi"

    def test_raw_json_line_without_prefix(self):
        assert extract_line_token('{"youChatToken":"raw"}') == "raw"

    def test_sentinel_yields_nothing(self):
        assert extract_line_token("data: [DONE]") is None

    def test_empty_frame_yields_nothing(self):
        assert extract_line_token("data: {}") is None
        assert extract_line_token("data: ") is None
        assert extract_line_token("") is None

    def test_malformed_json_is_skipped(self):
        assert extract_line_token("data: {not json") is None
        assert extract_line_token("event: youChatToken") is None

    def test_non_object_json_yields_nothing(self):
        assert extract_line_token("data: [1, 2]") is None
        assert extract_line_token('data: "text"') is None


# ============================================================================
# Field Probing Tests
# ============================================================================

class TestExtractToken:
    """Test ordered field probing on parsed frames."""

    def test_vendor_field_wins_over_text(self):
        assert extract_token({"text": "generic", "youChatToken": "vendor"}) == "vendor"

    def test_generic_fields_in_order(self):
        assert extract_token({"answer": "a", "message": "m"}) == "m"
        assert extract_token({"reply": "r", "data": "d"}) == "r"
        assert extract_token({"data": "d"}) == "d"

    def test_empty_string_falls_through(self):
        assert extract_token({"youChatToken": "", "text": "t"}) == "t"

    def test_non_string_field_falls_through(self):
        assert extract_token({"text": {"nested": True}, "content": "c"}) == "c"

    def test_delta_content(self):
        assert extract_token({"delta": {"content": "d"}}) == "d"

    def test_openai_message_shape(self):
        obj = {"choices": [{"message": {"content": "full"}}]}
        assert extract_token(obj) == "full"

    def test_openai_delta_shape(self):
        obj = {"choices": [{"index": 0, "delta": {"content": "piece"}}]}
        assert extract_token(obj) == "piece"

    def test_generic_field_beats_nested(self):
        obj = {"text": "top", "choices": [{"delta": {"content": "nested"}}]}
        assert extract_token(obj) == "top"

    def test_no_match(self):
        assert extract_token({"youChatUpdate": {"foo": "bar"}}) is None
        assert extract_token({"choices": []}) is None
        assert extract_token(None) is None
        assert extract_token("string") is None


# ============================================================================
# Stream Folding Tests
# ============================================================================

class TestTokenStream:
    """Test the fold over a sequence of lines."""

    @pytest.mark.asyncio
    async def test_iter_tokens_keeps_order(self):
        lines = [
            'data: {"youChatToken":"Hel"}',
            "",
            "data: {not json",
            'data: {"youChatToken":"lo"}',
            "data: {}",
            'data: {"text":"!"}',
        ]
        assert [t async for t in iter_tokens(_aiter(lines))] == ["Hel", "lo", "!"]

    @pytest.mark.asyncio
    async def test_iter_tokens_stops_at_done(self):
        lines = ['data: {"youChatToken":"a"}', "data: [DONE]", 'data: {"youChatToken":"b"}']
        assert [t async for t in iter_tokens(_aiter(lines))] == ["a"]

    @pytest.mark.asyncio
    async def test_iter_tokens(self):
        lines = ["event: youChatToken", 'data: {"youChatToken":"x"}', "data: [DONE]"]
        assert [t async for t in iter_tokens(_aiter(lines))] == ["x"]

    @pytest.mark.asyncio
    async def test_iter_tokens_empty(self):
        assert [t async for t in iter_tokens(_aiter(["data: {}", "data: [DONE]"]))] == []

    def test_deeply_nested_line_is_skipped(self):
        assert extract_line_token("data: " + "[" * 100000) is None

    @pytest.mark.asyncio
    async def test_deeply_nested_line_does_not_end_stream(self):
        lines = ["data: " + "[" * 100000, 'data: {"youChatToken":"ok"}']
        assert [t async for t in iter_tokens(_aiter(lines))] == ["ok"]


# ============================================================================
# Framing Tests
# ============================================================================

class TestResponseFramer:
    """Test OpenAI chunk framing."""

    @pytest.mark.asyncio
    async def test_stream_text_word_chunks(self):
        framer = ResponseFramer("gpt-4o", chunk_delay_s=0)
        frames = _decode_frames(await _collect(framer.stream_text("a b c")))

        assert len(frames) == 5
        assert frames[-1] == "[DONE]"
        chunks = frames[:-1]
        assert [c["choices"][0]["delta"]["content"] for c in chunks] == ["a ", "b ", "c ", ""]
        assert [c["choices"][0]["finish_reason"] for c in chunks] == [None, None, None, "stop"]
        assert {c["id"] for c in chunks} == {framer.response_id}
        assert {c["created"] for c in chunks} == {framer.created}
        assert all(c["object"] == "chat.completion.chunk" for c in chunks)
        assert all(c["model"] == "gpt-4o" for c in chunks)

    @pytest.mark.asyncio
    async def test_stream_text_collapses_whitespace(self):
        framer = ResponseFramer("m", chunk_delay_s=0)
        frames = _decode_frames(await _collect(framer.stream_text("  one \n\t two  ")))
        assert [f["choices"][0]["delta"]["content"] for f in frames[:-1]] == ["one ", "two ", ""]

    @pytest.mark.asyncio
    async def test_stream_text_empty_content(self):
        framer = ResponseFramer("m", chunk_delay_s=0)
        frames = _decode_frames(await _collect(framer.stream_text("")))
        assert len(frames) == 2
        assert frames[0]["choices"][0]["finish_reason"] == "stop"
        assert frames[1] == "[DONE]"

    @pytest.mark.asyncio
    async def test_pacing_between_words_only(self):
        delays = []

        async def fake_sleep(s):
            delays.append(s)

        framer = ResponseFramer("m", chunk_delay_s=0.05, sleep=fake_sleep)
        await _collect(framer.stream_text("a b c"))
        assert delays == [0.05, 0.05]

    @pytest.mark.asyncio
    async def test_zero_pacing_never_sleeps(self):
        async def fail_sleep(s):
            raise AssertionError("should not sleep")

        framer = ResponseFramer("m", chunk_delay_s=0, sleep=fail_sleep)
        await _collect(framer.stream_text("a b c"))

    @pytest.mark.asyncio
    async def test_stream_tokens_preserves_arrival(self):
        framer = ResponseFramer("m", chunk_delay_s=0)
        out = await _collect(framer.stream_tokens(_aiter(["Hel", "lo", " world"])))
        frames = _decode_frames(out + list(framer.finish()))
        assert [f["choices"][0]["delta"]["content"] for f in frames[:-1]] == ["Hel", "lo", " world", ""]
        assert framer.emitted == 3

    def test_non_ascii_preserved(self):
        framer = ResponseFramer("m")
        assert "你好".encode("utf-8") in framer.chunk("你好")

    def test_build_completion_response(self):
        resp = build_completion_response("full text", "deepseek-chat")
        assert resp["object"] == "chat.completion"
        assert resp["id"].startswith("chatcmpl-")
        assert resp["model"] == "deepseek-chat"
        assert len(resp["choices"]) == 1
        choice = resp["choices"][0]
        assert choice["message"] == {"role": "assistant", "content": "full text"}
        assert choice["finish_reason"] == "stop"
