"""Explain session: one active streaming request at a time.

Triggering an explanation cancels whatever is in flight before anything
else happens, waits out a short debounce and the minimum interval since
the previous request, then streams the completion into a display. The
accumulated text is re-rendered on a short coalescing delay and once more
when the stream ends, so the display always finishes on the full text.
"""

import asyncio
import logging
import math
import time
from collections.abc import AsyncGenerator, Callable, Collection, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

import httpx

from symlight.config import Settings, get_settings
from symlight.core.cancellation import CancellationToken, OperationCancelled, race
from symlight.core.completion import stream_chat_completion
from symlight.core.markdown import render_markdown
from symlight.core.ui_state import UIState, UIStateMachine
from symlight.models.display import (
    ClearMessage,
    DisplayMessage,
    ErrorMessage,
    LoadingMessage,
    ShowMessage,
    StateMessage,
    StatusMessage,
)
from symlight.models.events import ChunkEvent, DoneEvent, ErrorEvent, StreamEvent
from symlight.models.messages import ChatMessage
from symlight.utils.errors import ErrorKind, get_user_message, log_error

logger = logging.getLogger(__name__)

StreamFactory = Callable[..., AsyncGenerator[StreamEvent, None]]


class Display(Protocol):
    """Receiver of display messages for one explanation."""

    def post(self, message: DisplayMessage) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class ExplainJob:
    """Everything needed to stream and render one explanation."""

    messages: tuple[ChatMessage, ...]
    allowed_links: frozenset[str] | None = None
    max_tokens: int | None = None
    temperature: float | None = None

    @classmethod
    def build(
        cls,
        messages: Sequence[ChatMessage],
        allowed_links: Collection[str] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> "ExplainJob":
        return cls(
            messages=tuple(messages),
            allowed_links=frozenset(allowed_links) if allowed_links is not None else None,
            max_tokens=max_tokens,
            temperature=temperature,
        )


class CoalescedRenderer:
    """Render the latest text snapshot at most once per delay window.

    A pending render is superseded by newer text rather than queued, and a
    snapshot that is already on screen is never rendered again.
    """

    def __init__(
        self,
        render: Callable[[str], str],
        show: Callable[[str], None],
        delay_seconds: float,
    ):
        self._render = render
        self._show = show
        self._delay = delay_seconds
        self._handle: asyncio.TimerHandle | None = None
        self._text = ""
        self._shown: str | None = None
        self.renders = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, text: str) -> None:
        self._text = text
        if self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def flush(self) -> None:
        """Render the latest snapshot now, dropping any pending render."""
        self.cancel()
        if self._text:
            self._render_now()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self._render_now()

    def _render_now(self) -> None:
        if self._text == self._shown:
            return
        self._shown = self._text
        self.renders += 1
        self._show(self._render(self._text))


class ExplainSession:
    """Owns the single active-request slot and the last request timestamp."""

    def __init__(
        self,
        settings: Settings,
        *,
        stream: StreamFactory = stream_chat_completion,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self._stream = stream
        self._client = client
        self._clock = clock
        self._token: CancellationToken | None = None
        self._display: Display | None = None
        self._task: asyncio.Task | None = None
        self._last_request_at = 0.0
        self.ui = UIStateMachine()

    @property
    def active(self) -> bool:
        return self._token is not None

    def cancel(self) -> None:
        """Cancel the active request, if any. Idempotent."""
        token, display = self._token, self._display
        self._token = None
        self._display = None
        if token is None:
            return
        logger.info("Aborting previous request")
        token.cancel()
        self._transition(None, UIState.IDLE)
        if display is not None:
            display.close()

    def cancel_for(self, display: Display) -> None:
        """Cancel only if ``display`` still owns the active request."""
        if self._display is display:
            self.cancel()

    def trigger(self, job: ExplainJob, display: Display) -> asyncio.Task:
        """Supersede any running request and schedule ``job``."""
        self.cancel()
        token = CancellationToken()
        self._token = token
        self._display = display
        self._post(token, display, StatusMessage(status="Waiting...", badge="..."))
        self._task = asyncio.create_task(self._run(job, display, token))
        return self._task

    async def _run(self, job: ExplainJob, display: Display, token: CancellationToken) -> None:
        explain = self.settings.explain
        try:
            await race(asyncio.sleep(explain.debounce_ms / 1000), token)

            missing = self.settings.missing_completion_fields()
            if missing:
                message = f"Set in settings: {', '.join(missing)}."
                logger.warning(f"Missing config: {', '.join(missing)}")
                self._fail(token, display, message)
                return

            if self._last_request_at:
                wait = explain.min_request_interval_ms / 1000 - (
                    self._clock() - self._last_request_at
                )
                if wait > 0:
                    logger.info(f"Rate limit: waiting {wait * 1000:.0f}ms")
                    self._post(
                        token,
                        display,
                        StatusMessage(
                            status=f"Cooling down ({math.ceil(wait)}s)...", badge="Wait"
                        ),
                    )
                    await race(asyncio.sleep(wait), token)

            await self._execute(job, display, token)
        except OperationCancelled:
            logger.debug("Explain request superseded before it started")
        except Exception as e:
            log_error(e, ErrorKind.STREAM_FAILURE, component="explain_session")
            if token is self._token:
                self._post(token, display, ErrorMessage(message=get_user_message(None)))
                self._transition(token, UIState.ERROR, display)
        finally:
            if token is self._token:
                self._token = None
                self._display = None
                display.close()

    async def _execute(self, job: ExplainJob, display: Display, token: CancellationToken) -> None:
        completion = self.settings.completion
        self._last_request_at = self._clock()

        self._transition(token, UIState.LOADING, display)
        self._post(token, display, LoadingMessage())
        self._post(token, display, ClearMessage())
        self._post(token, display, StatusMessage(status="Sending request…", badge="Working"))
        logger.info(f"Streaming from {completion.base_url} model={completion.model}")

        renderer = CoalescedRenderer(
            render=lambda text: render_markdown(text, job.allowed_links),
            show=lambda html: self._post(token, display, ShowMessage(html=html)),
            delay_seconds=self.settings.explain.render_delay_ms / 1000,
        )
        accumulator = ""
        chunk_count = 0

        kwargs: dict[str, Any] = {
            "timeout_ms": completion.timeout_ms,
            "max_tokens": job.max_tokens,
            "temperature": job.temperature,
            "log": logger.debug,
        }
        if self._client is not None:
            kwargs["client"] = self._client

        events = self._stream(
            completion.base_url,
            completion.api_key,
            completion.model,
            job.messages,
            token,
            **kwargs,
        )
        try:
            async for event in events:
                if token is not self._token:
                    break

                if isinstance(event, ChunkEvent):
                    chunk_count += 1
                    if chunk_count == 1:
                        self._transition(token, UIState.STREAMING, display)
                        self._post(
                            token,
                            display,
                            StatusMessage(status="Receiving explanation…", badge="Working"),
                        )
                    accumulator += event.content
                    renderer.schedule(accumulator)

                elif isinstance(event, DoneEvent):
                    logger.info(f"Done. {chunk_count} chunks, {len(accumulator)} chars")
                    renderer.flush()
                    if accumulator:
                        self._transition(token, UIState.READY, display)
                        self._post(
                            token,
                            display,
                            StatusMessage(status="Explanation ready", badge="Ready"),
                        )
                    else:
                        logger.info("No content in model response")
                        self._fail(token, display, get_user_message(ErrorKind.NO_CONTENT))
                    break

                elif isinstance(event, ErrorEvent):
                    suffix = " (aborted)" if event.cancelled else ""
                    logger.info(f"Error: {event.message}{suffix}")
                    if event.cancelled:
                        # Timeouts and aborts are not surfaced as errors
                        renderer.flush()
                        self._transition(token, UIState.IDLE, display)
                        self._post(
                            token, display, StatusMessage(status=event.message, badge="Idle")
                        )
                        break
                    renderer.flush()
                    self._fail(token, display, event.message)
                    break
        finally:
            renderer.cancel()
            await events.aclose()

    def _fail(self, token: CancellationToken, display: Display, message: str) -> None:
        self._transition(token, UIState.ERROR, display)
        self._post(token, display, ErrorMessage(message=message))
        self._post(token, display, StatusMessage(status=message, badge="Error"))

    def _post(self, token: CancellationToken, display: Display, message: DisplayMessage) -> None:
        # Superseded requests never write to a display again
        if token is self._token:
            display.post(message)

    def _transition(
        self,
        token: CancellationToken | None,
        target: UIState,
        display: Display | None = None,
    ) -> None:
        if token is not None and token is not self._token:
            return
        if self.ui.state == target:
            return
        if self.ui.transition_to(target) and display is not None:
            display.post(StateMessage(state=target.value))


@lru_cache
def get_session() -> ExplainSession:
    """Process-wide session shared by every explain request."""
    return ExplainSession(get_settings())
