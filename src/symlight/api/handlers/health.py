"""Health check endpoint handler."""

import asyncio
import logging
import time
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Response

from symlight import __version__
from symlight.api.deps import SessionDep, SettingsDep
from symlight.config import Settings
from symlight.models.health import ComponentHealth, HealthResponse, HealthStatus

logger = logging.getLogger(__name__)

router = APIRouter()

LATENCY_DEGRADED_MS = 2000


def models_url(base_url: str) -> str:
    """Model listing URL of an OpenAI-compatible base URL."""
    return base_url.strip().rstrip("/") + "/models"


async def check_completion_endpoint(
    settings: Settings, client: httpx.AsyncClient | None = None
) -> ComponentHealth:
    """Check that the completion endpoint is configured and reachable.

    A configured endpoint is probed with ``GET {base_url}/models`` unless
    the probe is disabled, in which case configuration alone decides.
    """
    missing = settings.missing_completion_fields()
    if missing:
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            error=f"Not configured: {', '.join(missing)}",
        )

    if not settings.health.endpoint_check_enabled:
        return ComponentHealth(status=HealthStatus.HEALTHY, message="Check disabled")

    completion = settings.completion
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.health.timeout_seconds)

    try:
        start_time = time.perf_counter()
        response = await client.get(
            models_url(completion.base_url),
            headers={"Authorization": f"Bearer {completion.api_key}"},
        )
        latency_ms = int((time.perf_counter() - start_time) * 1000)

        if response.status_code == 200:
            if latency_ms > LATENCY_DEGRADED_MS:
                return ComponentHealth(
                    status=HealthStatus.DEGRADED,
                    latency_ms=latency_ms,
                    message="High latency detected",
                )
            return ComponentHealth(status=HealthStatus.HEALTHY, latency_ms=latency_ms)
        elif response.status_code == 401:
            return ComponentHealth(status=HealthStatus.UNHEALTHY, error="Invalid API key")
        else:
            return ComponentHealth(
                status=HealthStatus.UNHEALTHY,
                error=f"Unexpected status code: {response.status_code}",
            )

    except httpx.TimeoutException:
        return ComponentHealth(status=HealthStatus.UNHEALTHY, error="Connection timeout")
    except httpx.HTTPError as e:
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            error=f"Connection failed: {str(e) or type(e).__name__}",
        )
    finally:
        if owns_client:
            await client.aclose()


def determine_overall_status(checks: dict[str, ComponentHealth]) -> HealthStatus:
    """Worst component status wins; no checks means healthy."""
    statuses = [check.status for check in checks.values()]

    if any(s == HealthStatus.UNHEALTHY for s in statuses):
        return HealthStatus.UNHEALTHY
    elif any(s == HealthStatus.DEGRADED for s in statuses):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: SettingsDep, session: SessionDep, response: Response
) -> HealthResponse:
    """Service health including the completion endpoint.

    - HTTP 200: healthy or degraded
    - HTTP 503: unhealthy
    """
    try:
        completion_check = await asyncio.wait_for(
            check_completion_endpoint(settings),
            timeout=settings.health.timeout_seconds,
        )
    except asyncio.TimeoutError:
        completion_check = ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            error="Health check timeout",
        )

    checks = {"completion": completion_check}
    overall_status = determine_overall_status(checks)

    if overall_status == HealthStatus.UNHEALTHY:
        response.status_code = 503

    return HealthResponse(
        status=overall_status,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        active_request=session.active,
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> dict:
    """Liveness probe with no dependency checks."""
    return {"status": "alive"}


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(
    settings: SettingsDep, session: SessionDep, response: Response
) -> HealthResponse:
    """Readiness probe; same as the main health check."""
    return await health_check(settings, session, response)
