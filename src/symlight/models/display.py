"""Messages posted to the display layer while an explanation streams."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class StatusMessage(BaseModel):
    """Short status line with a badge."""

    type: Literal["status"] = "status"
    status: str
    badge: Literal["...", "Idle", "Wait", "Working", "Ready", "Error"]


class LoadingMessage(BaseModel):
    type: Literal["loading"] = "loading"


class ClearMessage(BaseModel):
    type: Literal["clear"] = "clear"


class ShowMessage(BaseModel):
    """Rendered, sanitized markup replacing the displayed explanation."""

    type: Literal["show"] = "show"
    html: str


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str


class StateMessage(BaseModel):
    """Display state machine moved to a new state."""

    type: Literal["state"] = "state"
    state: str


DisplayMessage = Annotated[
    Union[
        StatusMessage,
        LoadingMessage,
        ClearMessage,
        ShowMessage,
        ErrorMessage,
        StateMessage,
    ],
    Field(discriminator="type"),
]
