"""Streaming explain endpoint handler."""

import logging

from fastapi import APIRouter, Request

from symlight.api.deps import SessionDep, SettingsDep
from symlight.core.session import ExplainJob
from symlight.core.streaming import (
    QueueDisplay,
    create_streaming_response,
    stream_display,
)
from symlight.models.request import ExplainRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/explain")
async def explain(
    request_body: ExplainRequest,
    request: Request,
    settings: SettingsDep,
    session: SessionDep,
):
    """Stream an explanation as Server-Sent Events of display messages.

    Starting an explanation cancels the one in flight; the superseded
    stream ends with ``[DONE]`` and no error. Disconnecting cancels the
    request behind this stream.

    Returns:
        StreamingResponse with SSE events.
    """
    explain_settings = settings.explain
    if request_body.mode is not None:
        explain_settings = explain_settings.model_copy(update={"mode": request_body.mode})
    mode = explain_settings.mode
    job = ExplainJob.build(
        request_body.messages,
        allowed_links=request_body.allowed_links,
        max_tokens=explain_settings.max_tokens,
        temperature=settings.completion.temperature,
    )

    logger.info(
        f"Explain request: messages={len(job.messages)}, mode={mode}, "
        f"allowed_links={'all' if job.allowed_links is None else len(job.allowed_links)}"
    )

    display = QueueDisplay()
    session.trigger(job, display)

    event_generator = stream_display(
        display,
        request=request,
        on_disconnect=lambda: session.cancel_for(display),
    )
    return create_streaming_response(event_generator, request)
