"""Error taxonomy and helpers."""

from symlight.utils.errors import (
    ErrorKind,
    describe_exception,
    get_user_message,
    truncate_error,
)

__all__ = [
    "ErrorKind",
    "describe_exception",
    "get_user_message",
    "truncate_error",
]
