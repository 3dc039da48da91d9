"""HTTP response body models."""

from pydantic import BaseModel


class RenderResponse(BaseModel):
    """Sanitized markup for a piece of markdown."""

    html: str
