"""Stream event models produced by the completion client.

A stream is zero or more ChunkEvents followed by exactly one DoneEvent or
ErrorEvent. Nothing follows the terminal event.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from symlight.utils.errors import ErrorKind


class ChunkEvent(BaseModel):
    """Incremental text content from the model."""

    model_config = ConfigDict(frozen=True)

    type: Literal["chunk"] = "chunk"
    content: str


class DoneEvent(BaseModel):
    """Stream completed."""

    model_config = ConfigDict(frozen=True)

    type: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    """Stream ended with a failure or was cancelled."""

    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    message: str
    cancelled: bool = False
    kind: ErrorKind = ErrorKind.STREAM_FAILURE


StreamEvent = Annotated[
    Union[ChunkEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]
