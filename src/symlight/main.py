"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from symlight import __version__
from symlight.api.routes import api_router
from symlight.config import Settings, get_settings
from symlight.core.session import get_session
from symlight.middleware.logging import LoggingMiddleware, configure_logging
from symlight.middleware.request_id import RequestIdMiddleware
from symlight.utils.errors import ErrorResponse, get_user_message

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging on startup; cancel any running explanation on shutdown."""
    settings = get_settings()

    configure_logging(level=settings.logging.level, format=settings.logging.format)

    logger.info(
        "Starting symlight",
        extra={
            "version": __version__,
            "host": settings.server.host,
            "port": settings.server.port,
            "log_level": settings.logging.level,
        },
    )

    # Explain requests report missing settings themselves
    missing = settings.missing_completion_fields()
    if missing:
        logger.warning(f"Completion endpoint not configured: {', '.join(missing)}")

    yield

    logger.info("Shutting down symlight")
    get_session().cancel()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing.
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="symlight",
        description="Streams code explanations from an OpenAI-compatible endpoint "
        "as sanitized, navigable HTML",
        version=__version__,
        lifespan=lifespan,
    )

    # Last added runs first; CORS stays outermost for preflight requests
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors.allowed_origins,
        allow_credentials=True,
        allow_methods=settings.server.cors.allowed_methods,
        allow_headers=settings.server.cors.allowed_headers,
    )

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    app.include_router(api_router)

    return app


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": "Validation error", "errors": exc.errors(include_url=False)},
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "Unhandled exception",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
        },
    )

    body = ErrorResponse(detail=get_user_message(None), request_id=request_id)
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


app = create_app()
