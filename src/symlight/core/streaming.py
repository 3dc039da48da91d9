"""Server-Sent Events encoder for display messages.

An explain request's display is an in-memory queue; the HTTP handler drains
it as an SSE stream terminated by ``data: [DONE]``.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from fastapi import Request
from fastapi.responses import StreamingResponse

from symlight.models.display import DisplayMessage, ErrorMessage

logger = logging.getLogger(__name__)

SSE_DONE_MARKER = "data: [DONE]\n\n"


def encode_sse_event(data: dict[str, Any] | str) -> str:
    """Encode data as a Server-Sent Event.

    Args:
        data: Dictionary to encode as JSON, or pre-encoded JSON string.

    Returns:
        SSE-formatted string with data: prefix and double newline.
    """
    if isinstance(data, str):
        json_data = data
    else:
        json_data = json.dumps(data, ensure_ascii=False)

    return f"data: {json_data}\n\n"


def encode_display_message(message: DisplayMessage) -> str:
    """Encode a display message model as an SSE event."""
    return encode_sse_event(message.model_dump())


class QueueDisplay:
    """Display that buffers messages for one SSE response.

    Posts after ``close`` are dropped; closing twice is harmless.
    """

    def __init__(self):
        self._queue: asyncio.Queue[DisplayMessage | None] = asyncio.Queue()
        self.closed = False

    def post(self, message: DisplayMessage) -> None:
        if not self.closed:
            self._queue.put_nowait(message)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)

    async def messages(self) -> AsyncIterator[DisplayMessage]:
        """Yield posted messages until the display is closed."""
        while True:
            message = await self._queue.get()
            if message is None:
                return
            yield message


async def stream_display(
    display: QueueDisplay,
    request: Request | None = None,
    on_disconnect: Callable[[], None] | None = None,
) -> AsyncIterator[str]:
    """Transform a display's messages into SSE-encoded strings.

    A client disconnect (or the response task being cancelled) invokes
    ``on_disconnect`` so the request behind the display can be cancelled.

    Yields:
        SSE-formatted strings, ending with the [DONE] marker.
    """
    try:
        async for message in display.messages():
            if request is not None and await request.is_disconnected():
                logger.info("Client disconnected, cancelling explain request")
                if on_disconnect is not None:
                    on_disconnect()
                return
            yield encode_display_message(message)
        yield SSE_DONE_MARKER
    except asyncio.CancelledError:
        logger.info("Stream cancelled, cleaning up")
        if on_disconnect is not None:
            on_disconnect()
        raise
    except Exception:
        logger.exception("Error during display streaming")
        yield encode_display_message(ErrorMessage(message="An unexpected error occurred"))
        yield SSE_DONE_MARKER


def create_streaming_response(
    event_generator: AsyncIterator[str],
    request: Request | None = None,
) -> StreamingResponse:
    """Create a FastAPI StreamingResponse for SSE.

    Args:
        event_generator: Async iterator yielding SSE-encoded strings.
        request: Optional request to extract request ID for headers.

    Returns:
        Configured StreamingResponse with SSE headers.
    """
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "x-accel-buffering": "no",  # Disable nginx buffering
    }

    if request and hasattr(request.state, "request_id"):
        headers["X-Request-ID"] = request.state.request_id

    return StreamingResponse(
        event_generator,
        media_type="text/event-stream",
        headers=headers,
    )
