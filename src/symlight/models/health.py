"""Health check data models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    """Health of one dependency, e.g. the completion endpoint."""

    model_config = ConfigDict(use_enum_values=True)

    status: HealthStatus
    latency_ms: int | None = None
    error: str | None = None
    message: str | None = None


class HealthResponse(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: HealthStatus
    version: str
    timestamp: datetime
    active_request: bool = False
    checks: dict[str, ComponentHealth]
