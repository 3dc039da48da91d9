"""API route registration."""

from fastapi import APIRouter

from symlight.api.handlers.explain import router as explain_router
from symlight.api.handlers.health import router as health_router
from symlight.api.handlers.render import router as render_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(explain_router, tags=["explain"])
api_router.include_router(render_router, tags=["render"])
