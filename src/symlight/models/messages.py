"""Chat message model sent to the completion service."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """One message of the conversation, immutable once built."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
