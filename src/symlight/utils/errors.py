"""Error taxonomy and user-facing error messages."""

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Failure classes of a streaming explain request."""

    NETWORK_FAILURE = "NETWORK_FAILURE"
    SERVICE_ERROR = "SERVICE_ERROR"
    MALFORMED_FRAME = "MALFORMED_FRAME"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    CANCELLED = "CANCELLED"
    NO_CONTENT = "NO_CONTENT"
    STREAM_FAILURE = "STREAM_FAILURE"


class ErrorResponse(BaseModel):
    """HTTP error response model."""

    detail: str
    kind: ErrorKind | None = None
    request_id: str | None = None


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK_FAILURE: "Could not reach the completion service.",
    ErrorKind.SERVICE_ERROR: "The completion service returned an error.",
    ErrorKind.EMPTY_RESPONSE: "Response body is empty",
    ErrorKind.CANCELLED: "Request aborted.",
    ErrorKind.NO_CONTENT: "No explanation was generated.",
    ErrorKind.STREAM_FAILURE: "The response stream was interrupted.",
}

DEFAULT_USER_MESSAGE = "An unexpected error occurred"

# Maximum length for error details
MAX_ERROR_LENGTH = 500


def get_user_message(kind: ErrorKind | None, default: str | None = None) -> str:
    """Get user-appropriate error message for an error kind.

    Args:
        kind: The error kind.
        default: Default message if kind not found.

    Returns:
        User-friendly error message.
    """
    if kind is None:
        return default or DEFAULT_USER_MESSAGE

    return USER_MESSAGES.get(kind, default or DEFAULT_USER_MESSAGE)


def truncate_error(error: str, max_length: int = MAX_ERROR_LENGTH) -> str:
    """Truncate error message if too long.

    Args:
        error: The error message.
        max_length: Maximum allowed length.

    Returns:
        Truncated error message.
    """
    if len(error) <= max_length:
        return error

    return error[: max_length - 3] + "..."


def describe_exception(exc: BaseException) -> str:
    """Readable one-line description of an exception, never empty."""
    text = str(exc).strip()
    return text or type(exc).__name__


def log_error(
    exc: Exception,
    kind: ErrorKind,
    request_id: str | None = None,
    **context: Any,
) -> None:
    """Log an error with context.

    Args:
        exc: The exception that occurred.
        kind: The classified error kind.
        request_id: Optional request ID.
        **context: Additional context to include in log.
    """
    log_extra = {
        "error_kind": kind.value,
        "error_type": type(exc).__name__,
        "request_id": request_id,
        **context,
    }

    if kind == ErrorKind.CANCELLED:
        logger.info(f"Request cancelled: {exc}", extra=log_extra)
    else:
        logger.error(f"Request error: {exc}", extra=log_extra)
