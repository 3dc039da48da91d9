"""One-shot markdown rendering endpoint."""

from fastapi import APIRouter

from symlight.core.markdown import render_markdown
from symlight.models.request import RenderRequest
from symlight.models.response import RenderResponse

router = APIRouter()


@router.post("/render", response_model=RenderResponse)
async def render(request_body: RenderRequest) -> RenderResponse:
    """Render markdown to sanitized HTML, linking only allowed locations."""
    return RenderResponse(
        html=render_markdown(request_body.text, request_body.allowed_links)
    )
