"""Streaming chat completion client for OpenAI-compatible endpoints.

``stream_chat_completion`` issues one ``stream: true`` request and yields
``ChunkEvent``s as the body arrives, then exactly one ``DoneEvent`` or
``ErrorEvent``. Network and service failures never raise past the
generator; they become the terminal ``ErrorEvent``.

Cancellation: the caller's token and an optional timeout are merged into
one token, and every suspension point (connect, each body read, reading an
error body) races against it, so a server that stalls mid-body cannot hold
the consumer past the timeout.
"""

import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from http import HTTPStatus

import httpx

from symlight.core.cancellation import (
    TIMEOUT_REASON,
    CancellationToken,
    LinkedToken,
    OperationCancelled,
    attach_timeout,
    merge_tokens,
    race,
)
from symlight.core.framing import EventDecoder, FrameBuffer, parse_completion_body
from symlight.models.events import ChunkEvent, DoneEvent, ErrorEvent, StreamEvent
from symlight.models.messages import ChatMessage
from symlight.utils.errors import ErrorKind, describe_exception, truncate_error

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"

# Diagnostics are logged for the first few reads and chunks only
LOGGED_READS = 2
LOGGED_CHUNKS = 3

ABORTED_MESSAGE = "Request aborted."
TIMED_OUT_MESSAGE = "Request timed out."


@dataclass
class PendingRequest:
    """In-flight state of one streaming call."""

    token: LinkedToken
    log: Callable[[str], None]
    frames: FrameBuffer = field(default_factory=FrameBuffer)
    decoder: EventDecoder | None = None
    reads: int = 0
    bytes_seen: int = 0
    chunks_emitted: int = 0
    # Raw body kept verbatim until the first chunk, for the non-stream fallback
    raw_body: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.decoder is None:
            self.decoder = EventDecoder(log=self.log)

    @property
    def content_observed(self) -> bool:
        return self.chunks_emitted > 0

    def emit_chunk(self, event: ChunkEvent) -> ChunkEvent:
        self.token.raise_if_cancelled()
        self.chunks_emitted += 1
        self.raw_body.clear()
        if self.chunks_emitted <= LOGGED_CHUNKS:
            self.log(f"sse yield #{self.chunks_emitted} len={len(event.content)}")
        return event


def build_completion_url(base_url: str) -> str:
    """Append the completions path to a base URL such as ``https://host/v1``."""
    return base_url.strip().rstrip("/") + COMPLETIONS_PATH


def build_payload(
    model: str,
    messages: Sequence[ChatMessage],
    max_tokens: int | None = None,
    temperature: float | None = None,
) -> dict:
    """Build the JSON body of a streaming completion request."""
    payload: dict = {
        "model": model,
        "messages": [m.model_dump() for m in messages],
        "stream": True,
    }
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    if temperature is not None:
        payload["temperature"] = temperature
    return payload


def _cancelled_event(reason: str) -> ErrorEvent:
    message = TIMED_OUT_MESSAGE if reason == TIMEOUT_REASON else ABORTED_MESSAGE
    return ErrorEvent(message=message, cancelled=True, kind=ErrorKind.CANCELLED)


async def _next_block(blocks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(blocks)
    except StopAsyncIteration:
        return None


async def _service_error_detail(response: httpx.Response, token: CancellationToken) -> str:
    """Best-effort message for a non-success response.

    Tries ``{"error": {"message": ...}}``, then the raw body text, then the
    standard reason phrase.
    """
    phrase = response.reason_phrase
    if not phrase:
        try:
            phrase = HTTPStatus(response.status_code).phrase
        except ValueError:
            phrase = "Unknown status"

    try:
        body = await race(response.aread(), token)
    except httpx.HTTPError:
        return phrase

    text = body.decode(response.encoding or "utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        message = data["error"].get("message")
        if isinstance(message, str) and message:
            return message
    return text or phrase


async def stream_chat_completion(
    base_url: str,
    api_key: str,
    model: str,
    messages: Sequence[ChatMessage],
    cancel: CancellationToken | None = None,
    *,
    timeout_ms: int = 0,
    max_tokens: int | None = None,
    temperature: float | None = None,
    log: Callable[[str], None] | None = None,
    client: httpx.AsyncClient | None = None,
) -> AsyncIterator[StreamEvent]:
    """Stream a chat completion as ``StreamEvent``s.

    Args:
        base_url: Endpoint base URL without ``/chat/completions``.
        api_key: Bearer credential.
        model: Model identifier.
        messages: Conversation to send; never mutated.
        cancel: Optional caller cancellation token.
        timeout_ms: Hard limit for the whole call, 0 disables it.
        max_tokens: Optional output token cap.
        temperature: Optional sampling temperature.
        log: Diagnostic sink; defaults to DEBUG logging.
        client: Optional shared client; one is created and closed otherwise.

    Yields:
        Zero or more ChunkEvents followed by one DoneEvent or ErrorEvent.
    """
    log = log or logger.debug
    token = merge_tokens(cancel)
    attach_timeout(token, timeout_ms / 1000 if timeout_ms > 0 else None)
    pending = PendingRequest(token=token, log=log)

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=None)

    response: httpx.Response | None = None
    blocks: AsyncGenerator[bytes, None] | None = None
    try:
        log("fetch start")
        try:
            request = client.build_request(
                "POST",
                build_completion_url(base_url),
                json=build_payload(model, messages, max_tokens, temperature),
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Accept": "text/event-stream",
                },
            )
            response = await race(client.send(request, stream=True), token)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            log(f"fetch error: {describe_exception(e)}")
            yield ErrorEvent(
                message=truncate_error(f"Network error: {describe_exception(e)}"),
                kind=ErrorKind.NETWORK_FAILURE,
            )
            return

        log(
            f"fetch ok status={response.status_code} "
            f"ct={response.headers.get('content-type', '')}"
        )

        if not response.is_success:
            detail = await _service_error_detail(response, token)
            yield ErrorEvent(
                message=truncate_error(f"API error ({response.status_code}): {detail}"),
                kind=ErrorKind.SERVICE_ERROR,
            )
            return

        blocks = response.aiter_bytes()
        while True:
            raw = await race(_next_block(blocks), token)
            pending.reads += 1
            if pending.reads <= LOGGED_READS:
                log(
                    f"read #{pending.reads} done={raw is None} "
                    f"valueLen={len(raw) if raw else 0}"
                )
            if raw is None:
                break

            pending.bytes_seen += len(raw)
            text = pending.frames.decode(raw)
            if not pending.content_observed:
                pending.raw_body.append(text)

            for line in pending.frames.feed_text(text):
                event = pending.decoder.decode(line)
                if event is None:
                    continue
                if isinstance(event, DoneEvent):
                    token.raise_if_cancelled()
                    log(f"sse done chunks={pending.chunks_emitted}")
                    yield event
                    return
                yield pending.emit_chunk(event)

        tail = pending.frames.flush()
        if tail is not None:
            event = pending.decoder.decode(tail)
            if isinstance(event, ChunkEvent):
                yield pending.emit_chunk(event)

        log(
            f"body done yieldCount={pending.chunks_emitted} "
            f"bytes={pending.bytes_seen} malformed={pending.decoder.malformed_frames}"
        )

        if not pending.content_observed:
            if pending.bytes_seen == 0:
                yield ErrorEvent(
                    message="Response body is empty", kind=ErrorKind.EMPTY_RESPONSE
                )
                return
            content = parse_completion_body("".join(pending.raw_body))
            if content is not None:
                log("non-stream completion body used as fallback")
                yield pending.emit_chunk(ChunkEvent(content=content))

        token.raise_if_cancelled()
        yield DoneEvent()

    except OperationCancelled as e:
        log(f"stream cancelled: {e.reason}")
        yield _cancelled_event(e.reason)
    except httpx.HTTPError as e:
        log(f"stream catch: {describe_exception(e)}")
        yield ErrorEvent(
            message=truncate_error(f"Streaming error: {describe_exception(e)}"),
            kind=ErrorKind.STREAM_FAILURE,
        )
    finally:
        token.dispose()
        if blocks is not None:
            await blocks.aclose()
        if response is not None:
            await response.aclose()
        if owns_client:
            await client.aclose()
