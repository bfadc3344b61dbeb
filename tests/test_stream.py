"""
Stream ingestion tests.

The decoder is fed hand-split chunks; the client runs against httpx.MockTransport
so no request ever leaves the process.
"""

import asyncio
import json

import httpx
import pytest

from chatforge.errors import InvalidResponse, RequestFailed
from chatforge.stream import (
    CompletionClient,
    DecoderState,
    Frame,
    SSEDecoder,
    parse_frame,
)

BODY = (
    b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n'
    b'data: {"choices":[{"delta":{"content":"lo"}}]}\n'
    b"data: [DONE]\n"
)


def frame(content: str) -> bytes:
    payload = json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False)
    return f"data: {payload}\n".encode()


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the given chunks"""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


def make_client(handler) -> CompletionClient:
    return CompletionClient(
        api_url="https://example.test/chat/completions",
        api_key="sk-test",
        model="test-model",
        transport=httpx.MockTransport(handler),
    )


def collect(decoder: SSEDecoder, chunks) -> str:
    text = ""
    for chunk in chunks:
        for f in decoder.feed(chunk):
            delta, problem = parse_frame(f)
            assert problem is None
            text += delta
    return text


# 1. Decoder


@pytest.mark.parametrize("split", range(1, len(BODY)))
def test_reply_is_independent_of_split_point(split):
    decoder = SSEDecoder()
    assert collect(decoder, [BODY[:split], BODY[split:]]) == "Hello"
    assert decoder.done


def test_partial_line_is_carried_forward():
    decoder = SSEDecoder()
    assert decoder.feed(b'data: {"choices":[{"delta":') == []
    assert decoder.state is DecoderState.AWAITING_LINE
    assert decoder.remainder

    frames = decoder.feed(b'{"content":"x"}}]}\n')
    assert frames == [Frame('{"choices":[{"delta":{"content":"x"}}]}')]
    assert decoder.state is DecoderState.HAVE_FRAME
    assert decoder.remainder == ""


def test_multibyte_character_split_across_chunks():
    body = frame("héllo ✓") + b"data: [DONE]\n"
    cut = body.index("✓".encode()) + 1
    assert collect(SSEDecoder(), [body[:cut], body[cut:]]) == "héllo ✓"


def test_input_after_done_is_ignored():
    decoder = SSEDecoder()
    decoder.feed(b"data: [DONE]\n" + frame("late"))
    assert decoder.done
    assert decoder.feed(frame("later")) == []
    assert decoder.flush() == []


def test_bare_done_line_terminates():
    decoder = SSEDecoder()
    frames = decoder.feed(frame("a") + b"[DONE]\n" + frame("b"))
    assert len(frames) == 1
    assert decoder.done


def test_comments_and_blank_lines_are_skipped():
    decoder = SSEDecoder()
    frames = decoder.feed(b": keep-alive\n\nevent: message\r\n" + frame("ok"))
    assert len(frames) == 1


def test_flush_handles_missing_trailing_newline():
    decoder = SSEDecoder()
    assert decoder.feed(frame("tail").rstrip(b"\n")) == []
    assert len(decoder.flush()) == 1


def test_parse_frame_reports_invalid_json():
    delta, problem = parse_frame(Frame("{not json"))
    assert delta is None
    assert "Failed to parse chunk" in problem


def test_parse_frame_without_content_is_empty_delta():
    assert parse_frame(Frame('{"choices":[{"delta":{"role":"assistant"}}]}')) == ("", None)
    assert parse_frame(Frame('{"choices":[],"usage":{}}')) == ("", None)


# 2. Client


def test_stream_chat_accumulates_and_forwards_deltas():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, stream=ChunkedStream([BODY[:20], BODY[20:57], BODY[57:]]))

    deltas = []
    result = asyncio.run(
        make_client(handler).stream_chat(
            [{"role": "user", "content": "hi", "timestamp": "2025-01-01T00:00:00+00:00"}],
            deltas.append,
        )
    )

    assert result.content == "Hello"
    assert deltas == ["Hel", "lo"]
    assert result.completed
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["stream"] is True
    assert seen["body"]["messages"][0]["content"] == "hi"
    assert seen["headers"]["authorization"] == "Bearer sk-test"
    assert seen["headers"]["accept"] == "text/event-stream"
    assert seen["headers"]["content-type"] == "application/json"


def test_malformed_frame_is_skipped():
    body = frame("A") + b"data: {broken\n" + frame("B") + b"data: [DONE]\n"

    def handler(request):
        return httpx.Response(200, content=body)

    result = asyncio.run(make_client(handler).stream_chat([]))

    assert result.content == "AB"
    assert len(result.diagnostics) == 1


def test_non_success_status_raises_invalid_response():
    def handler(request):
        return httpx.Response(401, json={"error": "bad key"})

    with pytest.raises(InvalidResponse) as excinfo:
        asyncio.run(make_client(handler).stream_chat([]))
    assert excinfo.value.status == 401


@pytest.mark.parametrize(
    "bad",
    [
        b'data: {"choices": 5}\n',
        b'data: {"choices": true}\n',
        b'data: {"choices": {"a": 1}}\n',
        b'data: {"choices": ["text"]}\n',
        b'data: {"choices": [{"delta": "text"}]}\n',
    ],
)
def test_wrong_shape_frame_is_skipped(bad):
    body = frame("A") + bad + frame("B") + b"data: [DONE]\n"

    def handler(request):
        return httpx.Response(200, content=body)

    result = asyncio.run(make_client(handler).stream_chat([]))

    assert result.content == "AB"
    assert len(result.diagnostics) == 1
    assert "Unexpected chunk shape" in result.diagnostics[0]


def test_undecodable_body_raises_invalid_response():
    def handler(request):
        return httpx.Response(
            200,
            headers={"content-encoding": "gzip"},
            stream=ChunkedStream([b"not gzip at all"]),
        )

    with pytest.raises(InvalidResponse):
        asyncio.run(make_client(handler).stream_chat([]))


def test_transport_failure_raises_request_failed():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RequestFailed):
        asyncio.run(make_client(handler).stream_chat([]))


def test_body_without_done_marker_still_returns_content():
    def handler(request):
        return httpx.Response(200, content=frame("partial"))

    result = asyncio.run(make_client(handler).stream_chat([]))
    assert result.content == "partial"
    assert not result.completed
