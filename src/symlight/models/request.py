"""HTTP request body models."""

from pydantic import BaseModel, Field

from symlight.config import ExplanationMode
from symlight.models.messages import ChatMessage


class ExplainRequest(BaseModel):
    """Request body for the streaming explain endpoint."""

    messages: list[ChatMessage] = Field(..., min_length=1)
    allowed_links: list[str] | None = Field(
        default=None,
        description="Locations ('path:line' or 'path:start-end') that may become "
        "clickable. Omit to allow every file link; pass [] to allow none.",
    )
    mode: ExplanationMode | None = Field(
        default=None,
        description="Overrides the configured explanation mode for this request.",
    )


class RenderRequest(BaseModel):
    """Request body for the one-shot render endpoint."""

    text: str
    allowed_links: list[str] | None = None
