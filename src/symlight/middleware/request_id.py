"""Request ID middleware for tracing explain streams across log lines.

Editor clients may send their own short correlation ids, so any compact
token is accepted; anything else is replaced with a fresh UUID.
"""

import re
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from symlight.middleware.logging import request_id_var

REQUEST_ID_HEADER = "X-Request-ID"

REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def is_valid_request_id(value: str | None) -> bool:
    return bool(value) and REQUEST_ID_RE.match(value) is not None


def generate_request_id() -> str:
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagate or assign an ``X-Request-ID``.

    The id is stored on ``request.state`` and in the logging context var, so
    the explain task spawned by the handler inherits it, and it is echoed in
    the response headers.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER)
        if not is_valid_request_id(request_id):
            request_id = generate_request_id()

        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
