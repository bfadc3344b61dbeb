"""
Streaming chat completions over server-sent events.

SSEDecoder turns arbitrary network chunks into complete `data:` frames and is
independent of any transport. CompletionClient performs the HTTP round-trip with
httpx and accumulates the delta text of every frame into one reply.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import httpx

from chatforge.errors import InvalidResponse, RequestFailed

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class DecoderState(Enum):
    AWAITING_LINE = "awaiting_line"
    HAVE_FRAME = "have_frame"
    DONE = "done"
    ERRORED = "errored"


@dataclass(frozen=True)
class Frame:
    """One `data:` line of the event stream, prefix removed."""

    payload: str


class SSEDecoder:
    """
    Reassembles event lines that split across chunk boundaries.

    Only complete lines are parsed; the trailing fragment is carried into the
    next feed(). Once the terminal marker is seen, further input is ignored.
    """

    def __init__(self):
        self.state = DecoderState.AWAITING_LINE
        self.remainder: str = ""
        self.error: str | None = None
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def done(self) -> bool:
        return self.state is DecoderState.DONE

    @property
    def finished(self) -> bool:
        return self.state in (DecoderState.DONE, DecoderState.ERRORED)

    def feed(self, chunk: bytes | str) -> list[Frame]:
        """Feeds the next chunk, returns every frame it completed"""
        if self.finished:
            return []
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        *lines, self.remainder = (self.remainder + chunk).split("\n")
        return self._process(lines)

    def flush(self) -> list[Frame]:
        """Processes whatever is left once the body is exhausted"""
        if self.finished:
            return []
        tail = self.remainder + self._utf8.decode(b"", final=True)
        self.remainder = ""
        return self._process([tail])

    def fail(self, reason: str):
        self.state = DecoderState.ERRORED
        self.error = reason

    def _process(self, lines: list[str]) -> list[Frame]:
        frames: list[Frame] = []
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith(":"):
                continue
            if line.startswith(DONE_MARKER):
                self._finish()
                break
            if not line.startswith(DATA_PREFIX):
                # event:, id:, retry: fields carry nothing we use
                continue
            payload = line[len(DATA_PREFIX) :].strip()
            if payload.startswith(DONE_MARKER):
                self._finish()
                break
            frames.append(Frame(payload))
        if not self.finished:
            self.state = DecoderState.HAVE_FRAME if frames else DecoderState.AWAITING_LINE
        return frames

    def _finish(self):
        self.state = DecoderState.DONE
        self.remainder = ""


def parse_frame(frame: Frame) -> tuple[str | None, str | None]:
    """
    Decodes one frame's JSON payload.

    Returns (delta, None) on success and (None, diagnostic) when the payload is
    not usable. Frames without content (role headers, finish markers) yield "".
    """
    try:
        data = json.loads(frame.payload)
    except json.JSONDecodeError as e:
        return None, f"Failed to parse chunk: {e}. Problematic chunk: {frame.payload}"
    if not isinstance(data, dict):
        return None, f"Unexpected chunk shape: {frame.payload}"
    choices = data.get("choices")
    if choices is None:
        return "", None
    if not isinstance(choices, list):
        return None, f"Unexpected chunk shape: {frame.payload}"
    if not choices:
        return "", None
    choice = choices[0]
    delta = choice.get("delta") if isinstance(choice, dict) else None
    if delta is None and isinstance(choice, dict):
        return "", None
    if not isinstance(delta, dict):
        return None, f"Unexpected chunk shape: {frame.payload}"
    content = delta.get("content")
    if content is None:
        return "", None
    if not isinstance(content, str):
        return None, f"Delta content is not text: {frame.payload}"
    return content, None


@dataclass
class StreamResult:
    """The accumulated reply and any frames that had to be skipped"""

    content: str = ""
    diagnostics: list[str] = field(default_factory=list)
    frames: int = 0
    completed: bool = False


class CompletionClient:
    """Sends the conversation to a chat-completion endpoint and ingests the stream"""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }

    def build_request(self, messages: list[dict]) -> dict:
        return {"messages": messages, "model": self.model, "stream": True}

    async def stream_chat(
        self,
        messages: list[dict],
        on_delta: Callable[[str], None] | None = None,
    ) -> StreamResult:
        """
        Streams one completion.

        Each delta is forwarded to on_delta as it arrives, in arrival order.
        Raises InvalidResponse on a non-success status or an undecodable body,
        and RequestFailed on transport failures. The caller owns persisting the reply.
        """
        decoder = SSEDecoder()
        result = StreamResult()
        parts: list[str] = []

        def consume(frames: list[Frame]):
            for frame in frames:
                result.frames += 1
                delta, problem = parse_frame(frame)
                if problem:
                    logger.warning(problem)
                    result.diagnostics.append(problem)
                    continue
                if delta:
                    parts.append(delta)
                    if on_delta:
                        on_delta(delta)

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                transport=self.transport,
            ) as client:
                async with client.stream(
                    "POST",
                    self.api_url,
                    json=self.build_request(messages),
                    headers=self.headers,
                ) as response:
                    if not response.is_success:
                        body = await response.aread()
                        detail = body.decode("utf-8", errors="replace").strip()
                        decoder.fail(f"HTTP {response.status_code}")
                        raise InvalidResponse(
                            f"Request failed with status: {response.status_code}"
                            + (f"\n{detail[:500]}" if detail else ""),
                            status=response.status_code,
                        )
                    async for chunk in response.aiter_bytes():
                        consume(decoder.feed(chunk))
                        if decoder.done:
                            break
                    consume(decoder.flush())
        except httpx.DecodingError as e:
            decoder.fail(str(e))
            raise InvalidResponse(f"Could not decode the response body: {e}") from e
        except httpx.RequestError as e:
            decoder.fail(str(e))
            raise RequestFailed(f"Request failed: {e}") from e

        result.content = "".join(parts)
        result.completed = decoder.done
        return result
